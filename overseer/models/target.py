"""监控目标数据模型"""

from dataclasses import dataclass, field
from typing import Dict, Any

from .health_check import ProbeKind


@dataclass(frozen=True)
class Target:
    """监控目标，加载后不可变

    interval 和 timeout 单位均为秒。
    """
    id: str
    address: str
    probe_kind: ProbeKind
    interval: float
    timeout: float
    failure_threshold: int = 3
    success_threshold: int = 2
    options: Dict[str, Any] = field(default_factory=dict, hash=False)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            'id': self.id,
            'address': self.address,
            'probe_kind': self.probe_kind.value,
            'interval': self.interval,
            'timeout': self.timeout,
            'failure_threshold': self.failure_threshold,
            'success_threshold': self.success_threshold,
            'options': dict(self.options)
        }
