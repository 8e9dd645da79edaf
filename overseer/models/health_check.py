"""健康检查相关的数据模型"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional


class ProbeKind(str, Enum):
    """探测类型"""
    DNS = 'dns'
    ICMP = 'icmp'
    TCP = 'tcp'
    HTTP = 'http'


class FailureKind(str, Enum):
    """探测失败分类"""
    TIMEOUT = 'timeout'
    RESOLUTION_FAILURE = 'resolution_failure'
    CONNECTION_REFUSED = 'connection_refused'
    UNREACHABLE = 'unreachable'
    UNEXPECTED_RESPONSE = 'unexpected_response'


class HealthStatus(str, Enum):
    """目标健康状态"""
    UNKNOWN = 'unknown'
    HEALTHY = 'healthy'
    DEGRADED = 'degraded'
    UNHEALTHY = 'unhealthy'

    @property
    def severity(self) -> int:
        """严重程度，数值越大越差"""
        return STATUS_SEVERITY[self]


STATUS_SEVERITY = {
    HealthStatus.HEALTHY: 0,
    HealthStatus.UNKNOWN: 1,
    HealthStatus.DEGRADED: 2,
    HealthStatus.UNHEALTHY: 3,
}


@dataclass(frozen=True)
class ProbeResult:
    """单次探测结果

    timestamp 是探测开始的墙钟时间，仅用于展示；observed_at 是探测开始的
    单调时钟读数，用于丢弃过期结果，不受系统时间回拨影响。
    """
    target_id: str
    success: bool
    timestamp: datetime = field(default_factory=datetime.now)
    latency: Optional[float] = None
    failure: Optional[FailureKind] = None
    message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False)
    observed_at: float = field(default_factory=time.monotonic, compare=False)

    def __post_init__(self):
        if self.success and self.failure is not None:
            raise ValueError("成功的探测结果不能带失败分类")
        if not self.success and self.failure is None:
            raise ValueError("失败的探测结果必须带失败分类")

    @classmethod
    def succeeded(cls, target_id: str, latency: float,
                  timestamp: Optional[datetime] = None,
                  message: Optional[str] = None,
                  metadata: Optional[Dict[str, Any]] = None,
                  observed_at: Optional[float] = None) -> 'ProbeResult':
        """构造成功结果"""
        return cls(
            target_id=target_id,
            success=True,
            timestamp=timestamp or datetime.now(),
            latency=latency,
            message=message,
            metadata=metadata or {},
            observed_at=time.monotonic() if observed_at is None else observed_at
        )

    @classmethod
    def failed(cls, target_id: str, failure: FailureKind,
               message: Optional[str] = None,
               timestamp: Optional[datetime] = None,
               latency: Optional[float] = None,
               metadata: Optional[Dict[str, Any]] = None,
               observed_at: Optional[float] = None) -> 'ProbeResult':
        """构造失败结果"""
        return cls(
            target_id=target_id,
            success=False,
            timestamp=timestamp or datetime.now(),
            latency=latency,
            failure=failure,
            message=message,
            metadata=metadata or {},
            observed_at=time.monotonic() if observed_at is None else observed_at
        )

    @property
    def outcome(self) -> str:
        """结果描述：success 或失败分类"""
        return 'success' if self.success else self.failure.value

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            'target_id': self.target_id,
            'outcome': self.outcome,
            'success': self.success,
            'timestamp': self.timestamp.isoformat(),
            'latency': self.latency,
            'failure': self.failure.value if self.failure else None,
            'message': self.message,
            'metadata': dict(self.metadata)
        }


@dataclass(frozen=True)
class TargetState:
    """目标健康状态快照"""
    target_id: str
    status: HealthStatus = HealthStatus.UNKNOWN
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_result: Optional[ProbeResult] = None
    last_transition_time: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            'id': self.target_id,
            'status': self.status.value,
            'consecutive_failures': self.consecutive_failures,
            'consecutive_successes': self.consecutive_successes,
            'last_result': self.last_result.to_dict() if self.last_result else None,
            'last_transition_time': (self.last_transition_time.isoformat()
                                     if self.last_transition_time else None)
        }


@dataclass(frozen=True)
class AlertEvent:
    """状态变化事件"""
    target_id: str
    from_status: HealthStatus
    to_status: HealthStatus
    timestamp: datetime
    triggering_result: ProbeResult

    @property
    def is_recovery(self) -> bool:
        """是否为恢复事件"""
        return self.to_status == HealthStatus.HEALTHY

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            'target_id': self.target_id,
            'from_status': self.from_status.value,
            'to_status': self.to_status.value,
            'timestamp': self.timestamp.isoformat(),
            'triggering_result': self.triggering_result.to_dict()
        }
