"""重试策略

退避延迟只由尝试次数决定，策略对象本身不可变、不记录历史。
"""

import random
from dataclasses import dataclass
from typing import Any, Dict, Optional

from .exceptions import InvalidConfigError


@dataclass(frozen=True)
class RetryPolicy:
    """重试配置"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = False

    def validate(self) -> None:
        """
        验证重试配置

        Raises:
            InvalidConfigError: 配置无效
        """
        if not isinstance(self.max_attempts, int) or isinstance(self.max_attempts, bool) \
                or self.max_attempts < 1:
            raise InvalidConfigError("retry.max_attempts 必须是正整数")
        if self.base_delay < 0:
            raise InvalidConfigError("retry.base_delay 不能为负数")
        if self.max_delay < self.base_delay:
            raise InvalidConfigError("retry.max_delay 不能小于 base_delay")
        if self.multiplier < 1:
            raise InvalidConfigError("retry.multiplier 不能小于1")


def compute_backoff(policy: RetryPolicy, attempt: int,
                    rng: Optional[random.Random] = None) -> float:
    """计算第 attempt 次失败后的等待时间

    Args:
        policy: 重试策略
        attempt: 已失败的尝试次数（从1开始）
        rng: 抖动使用的随机数生成器

    Returns:
        float: 等待秒数
    """
    if attempt < 1:
        raise ValueError("attempt 从1开始计数")

    delay = min(policy.base_delay * (policy.multiplier ** (attempt - 1)), policy.max_delay)

    # 抖动范围 [delay/2, delay]
    if policy.jitter:
        rng = rng or random
        delay = delay * (0.5 + rng.random() * 0.5)

    return delay


def retry_policy_from_config(config: Optional[Dict[str, Any]],
                             default: Optional[RetryPolicy] = None) -> RetryPolicy:
    """从配置字典构造重试策略

    Args:
        config: ``retry`` 配置段
        default: 未配置字段使用的默认策略

    Returns:
        RetryPolicy: 验证通过的重试策略

    Raises:
        InvalidConfigError: 配置无效
    """
    default = default or RetryPolicy()
    if config is None:
        return default
    if not isinstance(config, dict):
        raise InvalidConfigError("retry 配置必须是字典类型")

    try:
        policy = RetryPolicy(
            max_attempts=config.get('max_attempts', default.max_attempts),
            base_delay=float(config.get('base_delay', default.base_delay)),
            max_delay=float(config.get('max_delay', default.max_delay)),
            multiplier=float(config.get('multiplier', default.multiplier)),
            jitter=bool(config.get('jitter', default.jitter))
        )
    except (TypeError, ValueError) as e:
        raise InvalidConfigError(f"retry 配置格式错误: {e}")

    policy.validate()
    return policy
