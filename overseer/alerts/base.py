"""通知动作基类"""

import json
from abc import ABC, abstractmethod
from typing import Dict, Any

from ..models.health_check import AlertEvent
from ..utils.exceptions import ActionConfigError, InvalidConfigError
from ..utils.log_manager import get_logger
from ..utils.retry import RetryPolicy, retry_policy_from_config


class BaseAction(ABC):
    """通知动作抽象基类

    每次 send 只做一次投递尝试，重试由通知器按 retry_policy 负责。
    """

    action_type = 'base'

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化通知动作

        Args:
            name: 动作名称
            config: 动作配置参数

        Raises:
            ActionConfigError: 配置无效
        """
        self.name = name
        self.config = config
        self.logger = get_logger(f'action.{self.action_type}.{self.name}')

        try:
            self.retry_policy: RetryPolicy = retry_policy_from_config(config.get('retry'))
        except InvalidConfigError as e:
            raise ActionConfigError(f"通知动作 {name} 的重试配置无效: {e}", action_name=name)

        if not self.validate_config():
            raise ActionConfigError(f"通知动作配置无效: {name}", action_name=name)

    @abstractmethod
    async def send(self, event: AlertEvent) -> None:
        """
        投递一次状态变化通知

        Args:
            event: 状态变化事件

        Raises:
            NotificationDeliveryError: 投递失败
        """

    @abstractmethod
    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """

    def get_timeout(self) -> float:
        """
        获取单次投递的超时时间

        Returns:
            float: 超时时间（秒）
        """
        return float(self.config.get('timeout', 30))

    @staticmethod
    def template_vars(event: AlertEvent) -> Dict[str, str]:
        """模板可用的变量"""
        result = event.triggering_result
        return {
            'target_id': event.target_id,
            'from_status': event.from_status.value,
            'to_status': event.to_status.value,
            'status': event.to_status.value.upper(),
            'timestamp': event.timestamp.strftime('%Y-%m-%d %H:%M:%S'),
            'outcome': result.outcome,
            'message': result.message or '无',
            'latency': f"{result.latency * 1000:.1f}" if result.latency is not None else '未知',
        }

    def render_template(self, template_str: str, event: AlertEvent,
                        json_escape: bool = False) -> str:
        """
        使用 {{variable}} 语法渲染模板

        Args:
            template_str: 模板字符串
            event: 状态变化事件
            json_escape: 变量值是否按JSON字符串转义

        Returns:
            str: 渲染后的内容
        """
        rendered = template_str
        for key, value in self.template_vars(event).items():
            safe_value = json.dumps(value)[1:-1] if json_escape else value
            rendered = rendered.replace(f'{{{{{key}}}}}', safe_value)
        return rendered

    def get_config_summary(self) -> Dict[str, Any]:
        """获取配置摘要"""
        return {
            'name': self.name,
            'type': self.action_type,
            'timeout': self.get_timeout(),
            'max_attempts': self.retry_policy.max_attempts
        }
