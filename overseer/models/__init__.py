"""数据模型模块"""

from .health_check import (ProbeKind, FailureKind, HealthStatus, STATUS_SEVERITY,
                           ProbeResult, TargetState, AlertEvent)
from .target import Target

__all__ = ['ProbeKind', 'FailureKind', 'HealthStatus', 'STATUS_SEVERITY',
           'ProbeResult', 'TargetState', 'AlertEvent', 'Target']
