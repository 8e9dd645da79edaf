"""通知动作工厂"""

from typing import Dict, Any, List, Type

from .base import BaseAction
from ..utils.config_validator import ConfigValidator
from ..utils.exceptions import ActionConfigError


class ActionFactory:
    """通知动作工厂类，按 type 创建通知动作"""

    def __init__(self):
        self._actions: Dict[str, Type[BaseAction]] = {}

    def register_action(self, action_type: str, action_class: Type[BaseAction]):
        """
        注册通知动作类

        Raises:
            ValueError: 重复注册或类型不合法
        """
        if not issubclass(action_class, BaseAction):
            raise ValueError(f"通知动作类 {action_class.__name__} 必须继承自 BaseAction")

        if action_type in self._actions:
            raise ValueError(f"通知动作类型 '{action_type}' 已经注册")

        self._actions[action_type] = action_class

    def create_action(self, config: Dict[str, Any]) -> BaseAction:
        """
        根据配置创建通知动作

        Args:
            config: 单个动作配置（包含 name 和 type）

        Returns:
            BaseAction: 通知动作实例

        Raises:
            InvalidConfigError: 配置无效
        """
        ConfigValidator.validate_action_config(config)

        action_class = self._actions.get(config['type'])
        if action_class is None:
            raise ActionConfigError(f"不支持的通知动作类型: '{config['type']}'",
                                    action_name=config['name'])

        return action_class(config['name'], config)

    def create_actions(self, configs: List[Dict[str, Any]]) -> List[BaseAction]:
        """根据配置列表创建全部通知动作"""
        ConfigValidator.validate_actions_config(configs)
        return [self.create_action(config) for config in configs]

    def get_supported_types(self) -> List[str]:
        """获取支持的通知动作类型"""
        return list(self._actions.keys())


action_factory = ActionFactory()


def register_action(action_type: str):
    """
    装饰器：注册通知动作类

    Args:
        action_type: 动作类型
    """
    def decorator(action_class: Type[BaseAction]):
        action_class.action_type = action_type
        action_factory.register_action(action_type, action_class)
        return action_class

    return decorator
