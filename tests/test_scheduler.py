"""探测调度器测试"""

import asyncio
import time
from collections import defaultdict
from typing import Dict, Any, Optional

import pytest

from overseer.models.health_check import FailureKind, HealthStatus, ProbeKind
from overseer.models.target import Target
from overseer.probes.base import BaseProbe, ProbeFailure
from overseer.probes.factory import ProbeFactory
from overseer.services.registry import TargetRegistry
from overseer.services.scheduler import ProbeScheduler
from overseer.utils.exceptions import InvariantViolationError


class ConcurrencyTracker:
    """记录探测并发情况"""

    def __init__(self):
        self.active = 0
        self.peak = 0
        self.per_target_active = defaultdict(int)
        self.per_target_peak = defaultdict(int)
        self.calls = defaultdict(int)

    def enter(self, target_id):
        self.active += 1
        self.peak = max(self.peak, self.active)
        self.per_target_active[target_id] += 1
        self.per_target_peak[target_id] = max(self.per_target_peak[target_id],
                                              self.per_target_active[target_id])
        self.calls[target_id] += 1

    def exit(self, target_id):
        self.active -= 1
        self.per_target_active[target_id] -= 1


class MockProbe(BaseProbe):
    """模拟探测器，行为由 options 控制"""

    def validate_config(self) -> bool:
        return True

    async def _probe(self, target: Target, deadline: float,
                     metadata: Dict[str, Any]) -> Optional[float]:
        tracker = self.options.get('tracker')
        if tracker:
            tracker.enter(target.id)
        try:
            await asyncio.sleep(self.options.get('delay', 0))
            raises = self.options.get('raises')
            if raises:
                raise raises
            if self.options.get('fail'):
                raise ProbeFailure(FailureKind.UNREACHABLE, '模拟失败')
            return 0.001
        finally:
            if tracker:
                tracker.exit(target.id)


def make_target(target_id, interval=0.05, timeout=0.04, **options):
    return Target(id=target_id, address='mock:1', probe_kind=ProbeKind.TCP,
                  interval=interval, timeout=timeout, failure_threshold=2,
                  success_threshold=1, options=options)


class TestProbeScheduler:
    """ProbeScheduler 测试"""

    def setup_method(self):
        self.factory = ProbeFactory()
        self.factory.register_probe(ProbeKind.TCP, MockProbe)
        self.registry = TargetRegistry(min_interval=0.01, factory=self.factory)
        self.tracker = ConcurrencyTracker()
        self.events = []

    def make_scheduler(self, worker_pool_size=4):
        scheduler = ProbeScheduler(self.registry, worker_pool_size=worker_pool_size,
                                   requeue_delay=0.01)
        scheduler.add_transition_listener(self.events.append)
        return scheduler

    async def run_for(self, scheduler, seconds):
        task = asyncio.create_task(scheduler.start())
        await asyncio.sleep(seconds)
        await scheduler.stop(grace_period=1.0)
        await task

    def test_invalid_pool_size(self):
        with pytest.raises(ValueError):
            ProbeScheduler(self.registry, worker_pool_size=0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize('worker_pool_size', [1, 3, 8])
    async def test_per_target_serialisation_and_global_bound(self, worker_pool_size):
        for i in range(10):
            self.registry.register(make_target(f't{i}', tracker=self.tracker, delay=0.02))
        scheduler = self.make_scheduler(worker_pool_size)

        await self.run_for(scheduler, 0.5)

        assert all(peak == 1 for peak in self.tracker.per_target_peak.values())
        assert self.tracker.peak <= worker_pool_size
        assert scheduler.peak_concurrency <= worker_pool_size
        assert len(self.tracker.calls) == 10
        assert sum(self.tracker.calls.values()) > 10

    @pytest.mark.asyncio
    async def test_results_drive_state_machines(self):
        self.registry.register(make_target('up'))
        self.registry.register(make_target('down', fail=True))
        scheduler = self.make_scheduler()

        await self.run_for(scheduler, 0.3)

        assert self.registry.get_state('up').status == HealthStatus.HEALTHY
        assert self.registry.get_state('down').status == HealthStatus.UNHEALTHY
        transitions = {(e.target_id, e.to_status) for e in self.events}
        assert ('up', HealthStatus.HEALTHY) in transitions
        assert ('down', HealthStatus.UNHEALTHY) in transitions

    @pytest.mark.asyncio
    async def test_timeout_reported_within_deadline(self):
        self.registry.register(make_target('slow', interval=5, timeout=0.1, delay=5))
        scheduler = self.make_scheduler()

        started = time.monotonic()
        results = await scheduler.check_all_now()
        elapsed = time.monotonic() - started

        assert results['slow'].failure == FailureKind.TIMEOUT
        assert elapsed < 0.1 + 0.5
        assert scheduler.timed_out == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize('error, expected', [
        (ConnectionResetError('reset'), FailureKind.UNREACHABLE),
        (RuntimeError('boom'), FailureKind.UNEXPECTED_RESPONSE),
    ])
    async def test_unexpected_probe_errors_contained(self, error, expected):
        self.registry.register(make_target('buggy', raises=error))
        scheduler = self.make_scheduler()

        results = await scheduler.check_all_now()

        assert results['buggy'].failure == expected
        assert self.registry.get_state('buggy').status == HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_no_result_after_deregistration(self):
        machine = self.registry.register(make_target('gone', interval=1, timeout=0.5,
                                                     delay=0.3, tracker=self.tracker))
        scheduler = self.make_scheduler()
        task = asyncio.create_task(scheduler.start())

        await asyncio.sleep(0.05)
        assert scheduler.get_in_flight() == ['gone']
        self.registry.deregister('gone')
        await asyncio.sleep(0.4)

        assert machine.snapshot().status == HealthStatus.UNKNOWN
        assert machine.snapshot().last_result is None
        assert scheduler.get_in_flight() == []
        assert self.events == []

        await scheduler.stop(grace_period=0.5)
        await task
        assert self.tracker.calls['gone'] == 1

    @pytest.mark.asyncio
    async def test_target_registered_while_running_is_probed(self):
        scheduler = self.make_scheduler()
        task = asyncio.create_task(scheduler.start())
        await asyncio.sleep(0.02)

        self.registry.register(make_target('late', tracker=self.tracker))
        await asyncio.sleep(0.2)

        await scheduler.stop(grace_period=0.5)
        await task
        assert self.tracker.calls['late'] >= 2

    @pytest.mark.asyncio
    async def test_next_due_measured_from_completion(self):
        self.registry.register(make_target('slowish', interval=0.1, timeout=0.09,
                                           delay=0.08, tracker=self.tracker))
        scheduler = self.make_scheduler()

        await self.run_for(scheduler, 0.55)

        # 每轮耗时约 delay + interval，不会为追赶而连续派发
        assert self.tracker.calls['slowish'] <= 4

    @pytest.mark.asyncio
    async def test_stop_cancels_after_grace_period(self):
        self.registry.register(make_target('stuck', interval=20, timeout=10, delay=10))
        scheduler = self.make_scheduler()
        task = asyncio.create_task(scheduler.start())
        await asyncio.sleep(0.05)

        started = time.monotonic()
        await scheduler.stop(grace_period=0.1)
        await task

        assert time.monotonic() - started < 1.0
        assert scheduler.get_in_flight() == []
        assert self.registry.get_state('stuck').status == HealthStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_double_dispatch_is_invariant_violation(self):
        self.registry.register(make_target('dup', delay=0.05))
        scheduler = self.make_scheduler()
        entry = self.registry.get_entry('dup')

        first = scheduler._start_probe(entry)
        with pytest.raises(InvariantViolationError):
            scheduler._start_probe(entry)
        await first

    @pytest.mark.asyncio
    async def test_check_all_now_shares_in_flight_probe(self):
        self.registry.register(make_target('shared', interval=1, timeout=0.5, delay=0.1,
                                           tracker=self.tracker))
        scheduler = self.make_scheduler()
        task = asyncio.create_task(scheduler.start())
        await asyncio.sleep(0.02)

        results = await scheduler.check_all_now()

        await scheduler.stop(grace_period=0.5)
        await task
        assert results['shared'].success
        assert self.tracker.calls['shared'] == 1
        assert self.tracker.per_target_peak['shared'] == 1

    @pytest.mark.asyncio
    async def test_scheduler_stats(self):
        self.registry.register(make_target('a'))
        scheduler = self.make_scheduler()
        await scheduler.check_all_now()

        stats = scheduler.get_scheduler_stats()
        assert stats['total_targets'] == 1
        assert stats['dispatched'] == 1
        assert stats['completed'] == 1
        assert stats['in_flight'] == 0
        assert stats['worker_pool_size'] == 4
