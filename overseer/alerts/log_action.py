"""日志通知动作"""

import logging
from typing import Dict, Any

from .base import BaseAction
from .factory import register_action
from ..models.health_check import AlertEvent, HealthStatus

DEFAULT_TEMPLATE = ('目标 {{target_id}} 状态变化: {{from_status}} -> {{to_status}} '
                    '({{outcome}}: {{message}})')


@register_action('log')
class LogAction(BaseAction):
    """日志通知动作，通过日志系统输出状态变化"""

    def __init__(self, name: str, config: Dict[str, Any]):
        self.level = config.get('level')
        self.template = config.get('template', DEFAULT_TEMPLATE)
        super().__init__(name, config)

    def validate_config(self) -> bool:
        if self.level is not None and not isinstance(logging.getLevelName(str(self.level).upper()), int):
            self.logger.error(f"日志动作 {self.name} 的日志级别无效: {self.level}")
            return False
        return isinstance(self.template, str) and bool(self.template)

    def _level_for(self, event: AlertEvent) -> int:
        if self.level is not None:
            return logging.getLevelName(str(self.level).upper())
        if event.to_status == HealthStatus.UNHEALTHY:
            return logging.ERROR
        if event.to_status == HealthStatus.DEGRADED:
            return logging.WARNING
        return logging.INFO

    async def send(self, event: AlertEvent) -> None:
        self.logger.log(self._level_for(event), self.render_template(self.template, event))
