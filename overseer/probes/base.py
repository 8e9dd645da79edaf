"""探测器基类"""

import asyncio
import socket
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

from ..models.health_check import FailureKind, ProbeResult
from ..models.target import Target
from ..utils.log_manager import get_logger


class ProbeFailure(Exception):
    """探测内部使用的失败信号，由基类转换为失败结果，不会离开探测器"""

    def __init__(self, kind: FailureKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


def classify_os_error(error: Optional[BaseException]) -> FailureKind:
    """
    将套接字异常归类为失败分类

    Args:
        error: 底层异常

    Returns:
        FailureKind: 失败分类
    """
    if isinstance(error, ConnectionRefusedError):
        return FailureKind.CONNECTION_REFUSED
    if isinstance(error, socket.gaierror):
        return FailureKind.RESOLUTION_FAILURE
    if isinstance(error, (TimeoutError, asyncio.TimeoutError)):
        return FailureKind.TIMEOUT
    return FailureKind.UNREACHABLE


def split_host_port(address: str, default_port: Optional[int] = None) -> Tuple[str, Optional[int]]:
    """
    拆分 host:port 地址，支持 [IPv6]:port

    Args:
        address: 地址字符串
        default_port: 地址中没有端口时使用的端口

    Returns:
        tuple: (host, port)

    Raises:
        ValueError: 端口无效
    """
    address = address.strip()
    if address.startswith('['):
        host, _, rest = address[1:].partition(']')
        port_str = rest[1:] if rest.startswith(':') else ''
    elif address.count(':') == 1:
        host, _, port_str = address.partition(':')
    else:
        # 无端口，或者是裸IPv6地址
        host, port_str = address, ''

    port = int(port_str) if port_str else default_port
    if port is not None and not 0 < port <= 65535:
        raise ValueError(f"端口超出范围: {port}")
    return host, port


class BaseProbe(ABC):
    """探测器抽象基类

    探测器实例只持有不可变的目标配置，可以被多个任务并发调用。
    子类实现 _probe，基类负责截止时间、计时和失败分类。
    """

    def __init__(self, target: Target):
        """
        初始化探测器

        Args:
            target: 监控目标
        """
        self.target = target
        self.options: Dict[str, Any] = target.options
        self.probe_type = target.probe_kind.value
        self.logger = get_logger(f'probe.{self.probe_type}.{target.id}')

    @abstractmethod
    def validate_config(self) -> bool:
        """
        验证探测参数是否有效

        Returns:
            bool: 配置是否有效
        """

    @abstractmethod
    async def _probe(self, target: Target, deadline: float,
                     metadata: Dict[str, Any]) -> Optional[float]:
        """
        执行一次实际探测

        Args:
            target: 监控目标
            deadline: 事件循环时钟上的截止时间
            metadata: 探测过程中收集的附加信息

        Returns:
            Optional[float]: 探测自身测得的延迟（秒），None 表示使用总耗时

        Raises:
            ProbeFailure: 探测失败
        """

    @staticmethod
    def remaining(deadline: float) -> float:
        """距离截止时间的剩余秒数"""
        return max(0.0, deadline - asyncio.get_running_loop().time())

    async def execute(self, target: Target, deadline: float) -> ProbeResult:
        """
        在截止时间内执行探测，超时一律报告为 Failure(timeout)

        Args:
            target: 监控目标
            deadline: 事件循环时钟上的截止时间

        Returns:
            ProbeResult: 探测结果
        """
        started = datetime.now()
        start = time.monotonic()
        metadata: Dict[str, Any] = {}

        try:
            remaining = self.remaining(deadline)
            if remaining <= 0:
                raise asyncio.TimeoutError()

            measured = await asyncio.wait_for(self._probe(target, deadline, metadata),
                                              timeout=remaining)
            latency = measured if measured is not None else time.monotonic() - start
            self.logger.debug(f"目标 {target.id} 探测成功，延迟: {latency:.3f}秒")
            return ProbeResult.succeeded(target.id, latency, timestamp=started, observed_at=start,
                                         metadata=metadata)

        except asyncio.TimeoutError:
            elapsed = time.monotonic() - start
            self.logger.debug(f"目标 {target.id} 探测超时，耗时: {elapsed:.3f}秒")
            return ProbeResult.failed(target.id, FailureKind.TIMEOUT,
                                      f"探测超时 (超时时间 {target.timeout}秒)",
                                      timestamp=started, observed_at=start, latency=elapsed,
                                      metadata=metadata)

        except ProbeFailure as e:
            elapsed = time.monotonic() - start
            self.logger.debug(f"目标 {target.id} 探测失败: {e.kind.value} - {e.message}")
            return ProbeResult.failed(target.id, e.kind, e.message,
                                      timestamp=started, observed_at=start, latency=elapsed,
                                      metadata=metadata)

    async def close(self):
        """释放探测器资源（默认无需处理）"""
