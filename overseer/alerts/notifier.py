"""通知器

订阅状态变化事件，把每个事件并发投递给所有通知动作；每个动作独立按自己的重试策略重试。
"""

import asyncio
from datetime import datetime
from typing import Dict, Any, List, Optional, Set

from .base import BaseAction
from ..models.health_check import AlertEvent, FailureKind, HealthStatus, ProbeResult
from ..utils.exceptions import NotificationDeliveryError
from ..utils.log_manager import get_logger
from ..utils.retry import compute_backoff


class Notifier:
    """通知器

    publish 只负责入队，不会阻塞调用方；投递失败不会影响其他动作或后续事件。
    """

    def __init__(self, actions: Optional[List[BaseAction]] = None, sleep=None):
        """
        初始化通知器

        Args:
            actions: 通知动作列表
            sleep: 退避等待函数，默认 asyncio.sleep
        """
        self.actions: List[BaseAction] = list(actions or [])
        self._sleep = sleep or asyncio.sleep
        self._queue: asyncio.Queue = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._deliveries: Set[asyncio.Task] = set()
        self._stats: Dict[str, Dict[str, int]] = {}
        self.published = 0
        self.logger = get_logger('notifier')

        for action in self.actions:
            self._stats[action.name] = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {'delivered': 0, 'failed_attempts': 0, 'dropped': 0}

    def add_action(self, action: BaseAction):
        """添加通知动作"""
        self.actions.append(action)
        self._stats.setdefault(action.name, self._empty_stats())
        self.logger.info(f"已添加通知动作: {action.name} ({action.action_type})")

    def set_actions(self, actions: List[BaseAction]):
        """替换全部通知动作，已在投递中的事件不受影响"""
        self.actions = list(actions)
        for action in self.actions:
            self._stats.setdefault(action.name, self._empty_stats())
        self.logger.info(f"通知动作已更新: {', '.join(self.get_action_names()) or '无'}")

    def get_action_names(self) -> List[str]:
        """获取所有通知动作名称"""
        return [action.name for action in self.actions]

    def publish(self, event: AlertEvent):
        """发布状态变化事件"""
        self.published += 1
        self._queue.put_nowait(event)

    def start(self):
        """启动事件消费任务"""
        if self._consumer is None or self._consumer.done():
            self._consumer = asyncio.create_task(self._consume())

    async def _consume(self):
        while True:
            event = await self._queue.get()
            task = asyncio.create_task(self.dispatch(event))
            self._deliveries.add(task)
            task.add_done_callback(self._on_delivery_done)

    def _on_delivery_done(self, task: asyncio.Task):
        self._deliveries.discard(task)
        self._queue.task_done()

    async def dispatch(self, event: AlertEvent) -> Dict[str, bool]:
        """
        把一个事件投递给所有通知动作

        Returns:
            Dict[str, bool]: 动作名称到是否投递成功的映射
        """
        actions = list(self.actions)
        if not actions:
            self.logger.debug(f"没有配置通知动作，跳过事件: {event.target_id}")
            return {}

        results = await asyncio.gather(*(self.deliver(action, event) for action in actions))
        return {action.name: result for action, result in zip(actions, results)}

    async def deliver(self, action: BaseAction, event: AlertEvent) -> bool:
        """
        按动作的重试策略投递一个事件

        Returns:
            bool: 是否投递成功；重试耗尽时记录日志并丢弃事件
        """
        policy = action.retry_policy
        stats = self._stats.setdefault(action.name, self._empty_stats())

        for attempt in range(1, policy.max_attempts + 1):
            try:
                await asyncio.wait_for(action.send(event), timeout=action.get_timeout())
                stats['delivered'] += 1
                if attempt > 1:
                    self.logger.info(f"通知动作 {action.name} 重试第 {attempt - 1} 次后发送成功")
                return True
            except NotificationDeliveryError as e:
                error = e.message
            except asyncio.TimeoutError:
                error = f"投递超时 ({action.get_timeout()}秒)"
            except Exception as e:
                self.logger.exception(f"通知动作 {action.name} 出现未预期的异常: {e}")
                error = f"{type(e).__name__}: {e}"

            stats['failed_attempts'] += 1
            self.logger.warning(
                f"通知动作 {action.name} 发送失败 (尝试 {attempt}/{policy.max_attempts}): {error}")

            if attempt < policy.max_attempts:
                delay = compute_backoff(policy, attempt)
                self.logger.debug(f"等待 {delay:.2f} 秒后重试")
                await self._sleep(delay)

        stats['dropped'] += 1
        self.logger.error(
            f"通知动作 {action.name} 所有重试均失败，放弃事件 "
            f"{event.target_id}: {event.from_status.value} -> {event.to_status.value}")
        return False

    async def stop(self, flush_timeout: float = 10.0):
        """
        停止通知器

        先投递已入队的事件并等待在途投递，超过 flush_timeout 的部分被取消。
        """
        if not self._queue.empty() or self._deliveries:
            self.start()
            try:
                await asyncio.wait_for(self._queue.join(), timeout=flush_timeout)
            except asyncio.TimeoutError:
                self.logger.warning(
                    f"通知刷新超时 ({flush_timeout}秒)，取消 {len(self._deliveries)} 个在途投递")

        if self._consumer is not None:
            self._consumer.cancel()
            await asyncio.gather(self._consumer, return_exceptions=True)
            self._consumer = None

        pending = list(self._deliveries)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self.logger.info("通知器已停止")

    async def test_actions(self) -> Dict[str, bool]:
        """
        发送测试事件到所有通知动作

        Returns:
            Dict[str, bool]: 每个动作的测试结果
        """
        now = datetime.now()
        result = ProbeResult.failed('overseer-test', FailureKind.UNREACHABLE,
                                    '这是一条测试通知', timestamp=now)
        event = AlertEvent(
            target_id='overseer-test',
            from_status=HealthStatus.HEALTHY,
            to_status=HealthStatus.UNHEALTHY,
            timestamp=now,
            triggering_result=result
        )
        self.logger.info(f"发送测试通知到 {len(self.actions)} 个通知动作")
        return await self.dispatch(event)

    def get_stats(self) -> Dict[str, Any]:
        """获取通知统计信息"""
        return {
            'published': self.published,
            'queued': self._queue.qsize(),
            'in_flight': len(self._deliveries),
            'actions': {name: dict(stats) for name, stats in self._stats.items()}
        }
