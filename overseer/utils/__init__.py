"""工具模块"""

from .exceptions import (OverseerError, InvalidConfigError, DuplicateTargetError,
                         TargetNotFoundError, NotificationDeliveryError,
                         ActionConfigError, InvariantViolationError, ErrorCode)
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager
from .retry import RetryPolicy, compute_backoff, retry_policy_from_config

__all__ = [
    'OverseerError', 'InvalidConfigError', 'DuplicateTargetError',
    'TargetNotFoundError', 'NotificationDeliveryError', 'ActionConfigError',
    'InvariantViolationError', 'ErrorCode',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager',
    'RetryPolicy', 'compute_backoff', 'retry_policy_from_config'
]
