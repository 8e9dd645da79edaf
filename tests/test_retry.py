"""重试策略测试"""

import random

import pytest

from overseer.utils.exceptions import InvalidConfigError
from overseer.utils.retry import RetryPolicy, compute_backoff, retry_policy_from_config


class TestComputeBackoff:
    """退避计算测试"""

    def test_exponential_growth(self):
        policy = RetryPolicy(max_attempts=5, base_delay=1.0, max_delay=60.0, multiplier=2.0)
        assert [compute_backoff(policy, n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 8.0]

    def test_capped_by_max_delay(self):
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=5.0, multiplier=3.0)
        assert compute_backoff(policy, 2) == 3.0
        assert compute_backoff(policy, 3) == 5.0
        assert compute_backoff(policy, 9) == 5.0

    def test_depends_only_on_attempt(self):
        policy = RetryPolicy(base_delay=0.5)
        assert compute_backoff(policy, 3) == compute_backoff(policy, 3)

    def test_jitter_range(self):
        policy = RetryPolicy(base_delay=4.0, max_delay=4.0, jitter=True)
        rng = random.Random(42)
        delays = [compute_backoff(policy, 1, rng) for _ in range(50)]
        assert all(2.0 <= delay <= 4.0 for delay in delays)
        assert len(set(delays)) > 1

    def test_attempt_starts_at_one(self):
        with pytest.raises(ValueError):
            compute_backoff(RetryPolicy(), 0)


class TestRetryPolicyFromConfig:
    """重试配置解析测试"""

    def test_defaults(self):
        assert retry_policy_from_config(None) == RetryPolicy()

    def test_partial_override(self):
        policy = retry_policy_from_config({'max_attempts': 5, 'base_delay': '0.5'})
        assert policy.max_attempts == 5
        assert policy.base_delay == 0.5
        assert policy.multiplier == 2.0

    @pytest.mark.parametrize('config', [
        {'max_attempts': 0},
        {'max_attempts': True},
        {'base_delay': -1},
        {'base_delay': 10, 'max_delay': 5},
        {'multiplier': 0.5},
        {'base_delay': 'soon'},
        ['max_attempts', 3],
    ])
    def test_invalid(self, config):
        with pytest.raises(InvalidConfigError):
            retry_policy_from_config(config)
