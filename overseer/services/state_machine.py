"""健康状态机模块

负责根据探测结果推进单个目标的健康状态，并在状态变化时生成 AlertEvent
"""

import threading
from dataclasses import replace
from datetime import datetime
from typing import Optional, Tuple

from ..models.health_check import AlertEvent, HealthStatus, ProbeResult, TargetState
from ..models.target import Target
from ..utils.exceptions import InvariantViolationError
from ..utils.log_manager import get_logger


def advance(state: TargetState, result: ProbeResult, failure_threshold: int,
            success_threshold: int,
            now: Optional[datetime] = None) -> Tuple[TargetState, Optional[AlertEvent]]:
    """根据一次探测结果计算下一个状态

    纯函数，不修改传入的状态。

    Args:
        state: 当前状态快照
        result: 探测结果
        failure_threshold: 连续失败阈值
        success_threshold: 连续成功阈值
        now: 状态变化时间，默认当前时间

    Returns:
        tuple: (新状态, 状态变化事件或None)
    """
    status = state.status

    if result.success:
        failures = 0
        successes = state.consecutive_successes + 1
        if status in (HealthStatus.UNKNOWN, HealthStatus.HEALTHY):
            new_status = HealthStatus.HEALTHY
        elif successes >= success_threshold:
            new_status = HealthStatus.HEALTHY
        else:
            new_status = status
    else:
        successes = 0
        failures = state.consecutive_failures + 1
        if failures >= failure_threshold:
            new_status = HealthStatus.UNHEALTHY
        elif status == HealthStatus.UNKNOWN:
            new_status = HealthStatus.DEGRADED
        else:
            new_status = status

    if new_status == HealthStatus.HEALTHY and status != HealthStatus.HEALTHY:
        failures = 0
    elif new_status == HealthStatus.UNHEALTHY and status != HealthStatus.UNHEALTHY:
        successes = 0

    if new_status == status:
        return replace(state,
                       consecutive_failures=failures,
                       consecutive_successes=successes,
                       last_result=result), None

    transition_time = now or datetime.now()
    new_state = replace(state,
                        status=new_status,
                        consecutive_failures=failures,
                        consecutive_successes=successes,
                        last_result=result,
                        last_transition_time=transition_time)
    event = AlertEvent(
        target_id=state.target_id,
        from_status=status,
        to_status=new_status,
        timestamp=transition_time,
        triggering_result=result
    )
    return new_state, event


class TargetStateMachine:
    """单个目标的健康状态机

    状态机是其 TargetState 的唯一写者；读者只能拿到不可变快照。
    """

    def __init__(self, target: Target):
        """初始化状态机

        Args:
            target: 监控目标
        """
        self.target = target
        self._state = TargetState(target_id=target.id)
        self._lock = threading.Lock()
        self._closed = False
        self.discarded_results = 0
        self.logger = get_logger('state_machine')

    @property
    def closed(self) -> bool:
        """状态机是否已关闭"""
        return self._closed

    def snapshot(self) -> TargetState:
        """获取当前状态快照"""
        with self._lock:
            return self._state

    def apply(self, result: ProbeResult) -> Optional[AlertEvent]:
        """应用一次探测结果

        Args:
            result: 探测结果

        Returns:
            状态发生变化时返回 AlertEvent，否则返回 None

        Raises:
            InvariantViolationError: 结果不属于该目标
        """
        if result.target_id != self.target.id:
            raise InvariantViolationError(
                f"目标 {self.target.id} 的状态机收到了目标 {result.target_id} 的探测结果")

        with self._lock:
            if self._closed:
                self.discarded_results += 1
                self.logger.debug(f"目标 {self.target.id} 已注销，丢弃探测结果")
                return None

            last_result = self._state.last_result
            if last_result is not None and result.observed_at < last_result.observed_at:
                self.discarded_results += 1
                self.logger.debug(
                    f"目标 {self.target.id} 收到过期探测结果 "
                    f"(开始于 {result.timestamp.isoformat()})，已丢弃")
                return None

            self._state, event = advance(self._state, result,
                                         self.target.failure_threshold,
                                         self.target.success_threshold)

        if event:
            self.logger.warning(
                f"目标 {self.target.id} 状态变化: {event.from_status.value} -> "
                f"{event.to_status.value} ({result.outcome})")
        return event

    def close(self):
        """关闭状态机，之后的探测结果全部丢弃"""
        with self._lock:
            self._closed = True
