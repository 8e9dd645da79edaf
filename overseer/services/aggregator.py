"""状态汇总模块

基于各目标状态机快照的只读视图，提供整体健康状态和状态变化历史
"""

import threading
from collections import deque
from datetime import datetime
from typing import Dict, Any, List, Optional

from ..models.health_check import AlertEvent, HealthStatus, TargetState
from ..utils.log_manager import get_logger
from .registry import TargetRegistry


def worst_status(statuses) -> HealthStatus:
    """
    按严重程度取最差状态

    Args:
        statuses: 状态序列

    Returns:
        HealthStatus: 最差状态，序列为空时为 unknown
    """
    worst: Optional[HealthStatus] = None
    for status in statuses:
        if worst is None or status.severity > worst.severity:
            worst = status
    return worst or HealthStatus.UNKNOWN


class StatusAggregator:
    """状态汇总器

    不缓存任何派生状态，每次调用都从状态机快照重新计算。
    """

    def __init__(self, registry: TargetRegistry, history_size: int = 100):
        """
        初始化状态汇总器

        Args:
            registry: 目标注册表
            history_size: 保留的最近状态变化条数
        """
        self.registry = registry
        self._transitions: deque = deque(maxlen=history_size)
        self._lock = threading.Lock()
        self.logger = get_logger('aggregator')

    def snapshot(self) -> List[TargetState]:
        """获取所有目标的状态快照"""
        return [machine.snapshot() for machine in self.registry.state_machines()]

    def overall_status(self) -> HealthStatus:
        """获取整体健康状态（最差状态）"""
        return worst_status(state.status for state in self.snapshot())

    def get_target_report(self, target_id: str) -> Dict[str, Any]:
        """
        获取单个目标的状态报告

        Raises:
            TargetNotFoundError: 目标不存在
        """
        machine = self.registry.get_state_machine(target_id)
        return self._target_report(machine.target, machine.snapshot())

    @staticmethod
    def _target_report(target, state: TargetState) -> Dict[str, Any]:
        report = state.to_dict()
        report['address'] = target.address
        report['probe_kind'] = target.probe_kind.value
        return report

    def get_target_reports(self) -> List[Dict[str, Any]]:
        """获取所有目标的状态报告"""
        return [self._target_report(machine.target, machine.snapshot())
                for machine in self.registry.state_machines()]

    def get_status_report(self) -> Dict[str, Any]:
        """
        获取完整状态报告

        Returns:
            Dict[str, Any]: 可直接序列化为JSON的报告
        """
        targets = self.get_target_reports()
        counts = {status.value: 0 for status in HealthStatus}
        for target in targets:
            counts[target['status']] += 1

        overall = worst_status(HealthStatus(target['status']) for target in targets)

        return {
            'overall_status': overall.value,
            'total_targets': len(targets),
            'status_counts': counts,
            'targets': targets,
            'generated_at': datetime.now().isoformat()
        }

    def record_transition(self, event: AlertEvent):
        """记录一次状态变化"""
        with self._lock:
            self._transitions.append(event)

    def recent_transitions(self, limit: Optional[int] = None) -> List[AlertEvent]:
        """
        获取最近的状态变化，按时间倒序

        Args:
            limit: 返回条数上限
        """
        with self._lock:
            events = list(self._transitions)
        events.reverse()
        if limit is not None:
            events = events[:max(0, limit)]
        return events
