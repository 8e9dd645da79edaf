"""数据模型测试"""

from datetime import datetime

import pytest

from overseer.models.health_check import (AlertEvent, FailureKind, HealthStatus, ProbeKind,
                                          ProbeResult, TargetState)
from overseer.models.target import Target


class TestProbeResult:
    """ProbeResult 测试"""

    def test_succeeded(self):
        result = ProbeResult.succeeded('api', 0.25)
        assert result.success
        assert result.failure is None
        assert result.latency == 0.25
        assert result.outcome == 'success'

    def test_failed(self):
        result = ProbeResult.failed('api', FailureKind.TIMEOUT, '超时')
        assert not result.success
        assert result.failure == FailureKind.TIMEOUT
        assert result.outcome == 'timeout'
        assert result.message == '超时'

    def test_success_with_failure_kind_rejected(self):
        with pytest.raises(ValueError):
            ProbeResult(target_id='api', success=True, failure=FailureKind.UNREACHABLE)

    def test_failure_without_kind_rejected(self):
        with pytest.raises(ValueError):
            ProbeResult(target_id='api', success=False)

    def test_to_dict(self):
        timestamp = datetime(2024, 1, 1, 12, 0, 0)
        result = ProbeResult.failed('api', FailureKind.CONNECTION_REFUSED, 'refused',
                                    timestamp=timestamp, metadata={'port': 80})
        data = result.to_dict()
        assert data['target_id'] == 'api'
        assert data['outcome'] == 'connection_refused'
        assert data['timestamp'] == '2024-01-01T12:00:00'
        assert data['metadata'] == {'port': 80}

    def test_immutable(self):
        result = ProbeResult.succeeded('api', 0.1)
        with pytest.raises(AttributeError):
            result.success = False

    def test_observed_at_is_monotonic(self):
        first = ProbeResult.succeeded('api', 0.1)
        second = ProbeResult.failed('api', FailureKind.TIMEOUT)
        assert second.observed_at >= first.observed_at
        assert ProbeResult.succeeded('api', 0.1, observed_at=42.0).observed_at == 42.0
        assert 'observed_at' not in first.to_dict()


class TestHealthStatus:
    """HealthStatus 测试"""

    def test_severity_order(self):
        assert HealthStatus.HEALTHY.severity < HealthStatus.UNKNOWN.severity
        assert HealthStatus.UNKNOWN.severity < HealthStatus.DEGRADED.severity
        assert HealthStatus.DEGRADED.severity < HealthStatus.UNHEALTHY.severity

    def test_string_values(self):
        assert HealthStatus('degraded') is HealthStatus.DEGRADED
        assert ProbeKind('icmp') is ProbeKind.ICMP


class TestTargetState:
    """TargetState 测试"""

    def test_initial_state(self):
        state = TargetState(target_id='db')
        assert state.status == HealthStatus.UNKNOWN
        assert state.consecutive_failures == 0
        assert state.consecutive_successes == 0
        assert state.last_result is None

    def test_to_dict(self):
        state = TargetState(target_id='db', status=HealthStatus.HEALTHY,
                            consecutive_successes=2,
                            last_result=ProbeResult.succeeded('db', 0.01))
        data = state.to_dict()
        assert data['id'] == 'db'
        assert data['status'] == 'healthy'
        assert data['last_result']['outcome'] == 'success'
        assert data['last_transition_time'] is None


class TestAlertEvent:
    """AlertEvent 测试"""

    def test_recovery_flag(self):
        result = ProbeResult.succeeded('db', 0.01)
        event = AlertEvent('db', HealthStatus.UNHEALTHY, HealthStatus.HEALTHY,
                           datetime.now(), result)
        assert event.is_recovery

        data = event.to_dict()
        assert data['from_status'] == 'unhealthy'
        assert data['to_status'] == 'healthy'
        assert data['triggering_result']['target_id'] == 'db'


class TestTarget:
    """Target 测试"""

    def test_defaults_and_to_dict(self):
        target = Target(id='web', address='https://example.com', probe_kind=ProbeKind.HTTP,
                        interval=30, timeout=5)
        assert target.failure_threshold == 3
        assert target.success_threshold == 2
        assert target.to_dict()['probe_kind'] == 'http'

    def test_equality_includes_options(self):
        first = Target('web', 'example.com:80', ProbeKind.TCP, 10, 2, options={'port': 80})
        second = Target('web', 'example.com:80', ProbeKind.TCP, 10, 2, options={'port': 81})
        assert first != second
