"""自定义异常类和错误处理系统"""

import traceback
from enum import Enum
from typing import Optional, Dict, Any
from datetime import datetime


class ErrorCode(Enum):
    """错误代码枚举"""
    # 通用错误 (1000-1999)
    UNKNOWN_ERROR = 1000
    INITIALIZATION_ERROR = 1001
    INVARIANT_VIOLATION = 1002

    # 配置错误 (2000-2999)
    CONFIG_FILE_NOT_FOUND = 2000
    CONFIG_PARSE_ERROR = 2001
    CONFIG_VALIDATION_ERROR = 2002
    CONFIG_RELOAD_ERROR = 2003

    # 注册表错误 (3000-3999)
    DUPLICATE_TARGET = 3000
    TARGET_NOT_FOUND = 3001

    # 通知错误 (4000-4999)
    ACTION_CONFIG_ERROR = 4000
    NOTIFICATION_DELIVERY_ERROR = 4001
    ACTION_TEMPLATE_ERROR = 4002

    # 调度错误 (5000-5999)
    SCHEDULER_ERROR = 5000


class OverseerError(Exception):
    """overseer 基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.error_code.name}] {self.message}"
        if self.details:
            details_str = ", ".join([f"{k}={v}" for k, v in self.details.items()])
            error_msg += f" (详情: {details_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class InvalidConfigError(OverseerError):
    """配置格式错误或配置前后矛盾，只在启动时致命"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_ERROR,
        config_path: Optional[str] = None,
        target_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if config_path:
            details['config_path'] = config_path
        if target_id:
            details['target_id'] = target_id
        kwargs.setdefault('recoverable', False)
        super().__init__(message, error_code, details, **kwargs)


class DuplicateTargetError(OverseerError):
    """目标ID重复注册"""

    def __init__(self, target_id: str, **kwargs):
        super().__init__(
            f"目标 '{target_id}' 已经注册",
            ErrorCode.DUPLICATE_TARGET,
            {'target_id': target_id},
            recoverable=False,
            **kwargs
        )
        self.target_id = target_id


class TargetNotFoundError(OverseerError):
    """目标不存在"""

    def __init__(self, target_id: str, **kwargs):
        super().__init__(
            f"目标 '{target_id}' 不存在",
            ErrorCode.TARGET_NOT_FOUND,
            {'target_id': target_id},
            **kwargs
        )
        self.target_id = target_id


class NotificationDeliveryError(OverseerError):
    """单个通知动作发送失败，由通知器重试"""

    def __init__(self, message: str, action_name: Optional[str] = None, **kwargs):
        details = kwargs.pop('details', {})
        if action_name:
            details['action_name'] = action_name
        super().__init__(
            message,
            ErrorCode.NOTIFICATION_DELIVERY_ERROR,
            details,
            recoverable=True,
            **kwargs
        )


class ActionConfigError(InvalidConfigError):
    """通知动作配置异常"""

    def __init__(self, message: str, action_name: Optional[str] = None, **kwargs):
        details = kwargs.pop('details', {})
        if action_name:
            details['action_name'] = action_name
        super().__init__(
            message,
            ErrorCode.ACTION_CONFIG_ERROR,
            details=details,
            **kwargs
        )


class InvariantViolationError(OverseerError):
    """内部不变量被破坏（程序逻辑错误），视为致命"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            ErrorCode.INVARIANT_VIOLATION,
            recoverable=False,
            **kwargs
        )
