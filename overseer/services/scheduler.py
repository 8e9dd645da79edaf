"""探测调度器模块

按下次到期时间维护最小堆，在全局并发上限内派发探测，并保证同一目标不会并发探测
"""

import asyncio
import heapq
import itertools
import time
from datetime import datetime
from typing import Dict, Any, Optional, List, Set, Tuple, Callable

from ..models.health_check import AlertEvent, FailureKind, ProbeResult
from ..models.target import Target
from ..probes.base import BaseProbe
from ..utils.exceptions import InvariantViolationError
from ..utils.log_manager import get_logger
from .registry import RegistryEntry, TargetRegistry


class ProbeScheduler:
    """探测调度器

    调度循环是到期堆的唯一写者；其他线程的注册表变化通过 call_soon_threadsafe 转交到事件循环。
    """

    def __init__(self, registry: TargetRegistry, worker_pool_size: int = 32,
                 requeue_delay: float = 0.05):
        """初始化调度器

        Args:
            registry: 目标注册表
            worker_pool_size: 全局并发探测上限 W
            requeue_delay: 无法立即派发时的重新排队延迟（秒）
        """
        if worker_pool_size < 1:
            raise ValueError("worker_pool_size 必须大于0")

        self.registry = registry
        self.worker_pool_size = worker_pool_size
        self.requeue_delay = requeue_delay
        self.is_running = False

        self._heap: List[Tuple[float, int, str, Target]] = []
        self._scheduled: Dict[str, int] = {}
        self._sequence = itertools.count()
        self._in_flight: Dict[str, asyncio.Task] = {}
        self._executing: Set[str] = set()
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._fatal_error: Optional[InvariantViolationError] = None
        self._transition_listeners: List[Callable[[AlertEvent], None]] = []

        self._active = 0
        self.peak_concurrency = 0
        self.dispatched = 0
        self.completed = 0
        self.timed_out = 0
        self.dropped_results = 0

        self.logger = get_logger('scheduler')
        registry.add_listener(self)

    def add_transition_listener(self, listener: Callable[[AlertEvent], None]):
        """添加状态变化监听器"""
        self._transition_listeners.append(listener)

    # 注册表监听接口

    def on_target_registered(self, target: Target):
        """新目标立即进入调度"""
        if self.is_running:
            self._call_on_loop(self._schedule_new, target)

    def on_target_deregistered(self, target_id: str):
        """取消已注销目标的在途探测并移出队列"""
        if self._loop is not None:
            self._call_on_loop(self._cancel_target, target_id)

    def _call_on_loop(self, callback, *args):
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None

        if running_loop is self._loop:
            callback(*args)
        elif self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(callback, *args)

    def _schedule_new(self, target: Target):
        if self.is_running:
            self._schedule(target, self._loop.time())
            self._wakeup.set()

    def _cancel_target(self, target_id: str):
        self._scheduled.pop(target_id, None)
        task = self._in_flight.get(target_id)
        if task is not None and not task.done():
            self.logger.debug(f"取消已注销目标 {target_id} 的在途探测")
            task.cancel()

    # 堆维护

    def _schedule(self, target: Target, due: float):
        seq = next(self._sequence)
        self._scheduled[target.id] = seq
        heapq.heappush(self._heap, (due, seq, target.id, target))

    def _ensure_loop_primitives(self):
        loop = asyncio.get_running_loop()
        if self._loop is not loop:
            self._loop = loop
            self._semaphore = asyncio.Semaphore(self.worker_pool_size)
            self._wakeup = asyncio.Event()

    async def start(self):
        """启动调度循环，直到 stop() 或出现致命错误

        Raises:
            InvariantViolationError: 检测到同一目标的并发探测
        """
        if self.is_running:
            self.logger.warning("调度器已经在运行")
            return

        self._ensure_loop_primitives()
        self.is_running = True
        self._fatal_error = None

        now = self._loop.time()
        for target in self.registry.list():
            self._schedule(target, now)

        self.logger.info(
            f"启动调度器，目标数: {len(self.registry)}，最大并发探测数: {self.worker_pool_size}")

        try:
            await self._schedule_loop()
        except InvariantViolationError as e:
            self._fail(e)
        except asyncio.CancelledError:
            self.logger.info("调度循环被取消")
            self.is_running = False
            raise

        if self._fatal_error is not None:
            await self._cancel_in_flight()
            raise self._fatal_error

    async def _schedule_loop(self):
        while self.is_running:
            self._wakeup.clear()
            delay = self._dispatch_due(self._loop.time())
            if not self.is_running:
                break

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

    def _dispatch_due(self, now: float) -> Optional[float]:
        """派发所有到期目标

        Returns:
            距离下一个到期目标的秒数，队列为空时返回 None
        """
        while self._heap and self._heap[0][0] <= now:
            due, seq, target_id, target = heapq.heappop(self._heap)
            if self._scheduled.get(target_id) != seq:
                continue

            entry = self.registry.get_entry(target_id)
            if entry is None or entry.target is not target:
                self._scheduled.pop(target_id, None)
                continue

            if target_id in self._in_flight:
                self._schedule(target, now + self.requeue_delay)
                continue

            if len(self._in_flight) >= self.worker_pool_size:
                self._schedule(target, now + self.requeue_delay)
                return self.requeue_delay

            del self._scheduled[target_id]
            self._start_probe(entry)

        if not self._heap:
            return None
        return max(0.0, self._heap[0][0] - now)

    def _start_probe(self, entry: RegistryEntry) -> asyncio.Task:
        target_id = entry.target.id
        if target_id in self._in_flight:
            raise InvariantViolationError(f"目标 {target_id} 已有在途探测，拒绝重复派发")

        self._ensure_loop_primitives()
        task = asyncio.create_task(self._run_probe(entry))
        self._in_flight[target_id] = task
        self.dispatched += 1
        task.add_done_callback(lambda finished: self._on_probe_done(entry, finished))
        return task

    async def _run_probe(self, entry: RegistryEntry) -> Optional[ProbeResult]:
        target = entry.target
        async with self._semaphore:
            if target.id in self._executing:
                self._fail(InvariantViolationError(f"检测到目标 {target.id} 的并发探测"))
                return None

            self._executing.add(target.id)
            self._active += 1
            self.peak_concurrency = max(self.peak_concurrency, self._active)
            try:
                result = await self._execute_with_deadline(entry.probe, target)
            finally:
                self._active -= 1
                self._executing.discard(target.id)

        self._deliver(entry, result)
        return result

    def _on_probe_done(self, entry: RegistryEntry, task: asyncio.Task):
        target = entry.target
        if self._in_flight.get(target.id) is task:
            del self._in_flight[target.id]

        if self.is_running and self.registry.get_entry(target.id) is entry:
            self._schedule(target, self._loop.time() + target.interval)

        if self._wakeup is not None:
            self._wakeup.set()

    async def _execute_with_deadline(self, probe: BaseProbe, target: Target) -> ProbeResult:
        """在目标超时时间内执行探测，超时则强制取消"""
        started = datetime.now()
        observed_at = time.monotonic()
        deadline = self._loop.time() + target.timeout

        try:
            return await asyncio.wait_for(probe.execute(target, deadline),
                                          timeout=target.timeout)
        except asyncio.TimeoutError:
            self.logger.debug(f"目标 {target.id} 探测超时，已取消")
            return ProbeResult.failed(target.id, FailureKind.TIMEOUT,
                                      f"探测超时 (超时时间 {target.timeout}秒)",
                                      timestamp=started, observed_at=observed_at,
                                      latency=target.timeout)
        except OSError as e:
            self.logger.exception(f"目标 {target.id} 探测出现未处理的网络异常: {e}")
            return ProbeResult.failed(target.id, FailureKind.UNREACHABLE, str(e),
                                      timestamp=started, observed_at=observed_at)
        except InvariantViolationError:
            raise
        except Exception as e:
            self.logger.exception(f"目标 {target.id} 探测出现未预期的异常: {e}")
            return ProbeResult.failed(target.id, FailureKind.UNEXPECTED_RESPONSE,
                                      f"{type(e).__name__}: {e}", timestamp=started,
                                      observed_at=observed_at)

    def _deliver(self, entry: RegistryEntry, result: ProbeResult):
        """将探测结果交给状态机并通知状态变化监听器"""
        if result.failure == FailureKind.TIMEOUT:
            self.timed_out += 1

        if self.registry.get_entry(entry.target.id) is not entry:
            self.dropped_results += 1
            return

        event = entry.state_machine.apply(result)
        self.completed += 1

        if event is None:
            return

        for listener in list(self._transition_listeners):
            try:
                listener(event)
            except Exception as e:
                self.logger.exception(f"状态变化监听器处理失败: {e}")

    def _fail(self, error: InvariantViolationError):
        self.logger.critical(f"调度器检测到内部不变量被破坏，停止调度: {error}")
        self._fatal_error = error
        self.is_running = False
        if self._wakeup is not None:
            self._wakeup.set()

    async def check_all_now(self) -> Dict[str, ProbeResult]:
        """立即对所有目标执行一轮探测

        与调度循环共享并发上限和在途记录，结果同样交给状态机。

        Returns:
            目标ID到探测结果的映射
        """
        self._ensure_loop_primitives()
        tasks: Dict[str, asyncio.Task] = {}
        for target in self.registry.list():
            entry = self.registry.get_entry(target.id)
            if entry is None:
                continue
            tasks[target.id] = self._in_flight.get(target.id) or self._start_probe(entry)

        outcomes = await asyncio.gather(*tasks.values(), return_exceptions=True)

        results: Dict[str, ProbeResult] = {}
        for target_id, outcome in zip(tasks.keys(), outcomes):
            if isinstance(outcome, ProbeResult):
                results[target_id] = outcome
            elif isinstance(outcome, BaseException) and not isinstance(outcome, asyncio.CancelledError):
                self.logger.error(f"目标 {target_id} 立即检查失败: {outcome}")

        if self._fatal_error is not None:
            raise self._fatal_error
        return results

    async def stop(self, grace_period: float = 10.0):
        """停止调度

        先停止派发，再等待在途探测最多 grace_period 秒，剩余的强制取消。

        Args:
            grace_period: 宽限时间（秒）
        """
        was_running = self.is_running
        self.is_running = False
        if self._wakeup is not None:
            self._wakeup.set()

        if was_running:
            self.logger.info("正在停止调度器...")

        tasks = [task for task in self._in_flight.values() if not task.done()]
        if tasks:
            self.logger.info(f"等待 {len(tasks)} 个在途探测完成，宽限时间 {grace_period}秒")
            _, pending = await asyncio.wait(tasks, timeout=grace_period)
            if pending:
                self.logger.warning(f"强制取消 {len(pending)} 个未完成的探测")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        self._heap.clear()
        self._scheduled.clear()

        if was_running:
            self.logger.info("调度器已停止")

    async def _cancel_in_flight(self):
        tasks = [task for task in self._in_flight.values() if not task.done()]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def get_in_flight(self) -> List[str]:
        """获取在途探测的目标ID列表"""
        return list(self._in_flight.keys())

    def get_scheduler_stats(self) -> Dict[str, Any]:
        """获取调度器统计信息"""
        return {
            'is_running': self.is_running,
            'total_targets': len(self.registry),
            'worker_pool_size': self.worker_pool_size,
            'in_flight': len(self._in_flight),
            'queued': len(self._scheduled),
            'peak_concurrency': self.peak_concurrency,
            'dispatched': self.dispatched,
            'completed': self.completed,
            'timed_out': self.timed_out,
            'dropped_results': self.dropped_results
        }
