"""外部命令通知动作

运行一个外部命令处理状态变化（例如重启服务），事件信息通过 OVERSEER_* 环境变量传入。
"""

import asyncio
import os
from typing import Dict, Any, List

from .base import BaseAction
from .factory import register_action
from ..models.health_check import AlertEvent
from ..utils.exceptions import NotificationDeliveryError


@register_action('exec')
class ExecAction(BaseAction):
    """外部命令通知动作"""

    def __init__(self, name: str, config: Dict[str, Any]):
        self.command: List[str] = config.get('command', [])
        self.env: Dict[str, str] = config.get('env', {})
        self.cwd = config.get('cwd')
        super().__init__(name, config)

    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        if not isinstance(self.command, list) or not self.command:
            self.logger.error(f"命令动作 {self.name} 的 command 必须是非空参数列表")
            return False

        if not all(isinstance(arg, str) for arg in self.command):
            self.logger.error(f"命令动作 {self.name} 的 command 参数必须都是字符串")
            return False

        if not isinstance(self.env, dict):
            self.logger.error(f"命令动作 {self.name} 的 env 必须是字典类型")
            return False

        return True

    def build_environment(self, event: AlertEvent) -> Dict[str, str]:
        """构造子进程环境变量"""
        environment = dict(os.environ)
        environment.update({str(key): str(value) for key, value in self.env.items()})
        environment.update({
            'OVERSEER_TARGET_ID': event.target_id,
            'OVERSEER_FROM_STATUS': event.from_status.value,
            'OVERSEER_TO_STATUS': event.to_status.value,
            'OVERSEER_TIMESTAMP': event.timestamp.isoformat(),
            'OVERSEER_OUTCOME': event.triggering_result.outcome,
            'OVERSEER_MESSAGE': event.triggering_result.message or '',
            'OVERSEER_ACTION': self.name,
        })
        return environment

    async def send(self, event: AlertEvent) -> None:
        """
        执行外部命令

        Raises:
            NotificationDeliveryError: 命令无法启动、超时或退出码非0
        """
        command = [self.render_template(arg, event) for arg in self.command]

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_environment(event),
                cwd=self.cwd
            )
        except OSError as e:
            raise NotificationDeliveryError(f"命令启动失败: {e}", action_name=self.name,
                                            cause=e)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(),
                                                    timeout=self.get_timeout())
        except asyncio.TimeoutError as e:
            raise NotificationDeliveryError(
                f"命令执行超时 ({self.get_timeout()}秒): {command[0]}",
                action_name=self.name, cause=e)
        finally:
            if process.returncode is None:
                process.kill()
                await process.wait()

        if process.returncode != 0:
            detail = stderr.decode('utf-8', errors='replace').strip()
            raise NotificationDeliveryError(
                f"命令退出码 {process.returncode}: {detail[:200]}", action_name=self.name)

        self.logger.debug(
            f"命令执行成功: {command[0]}，输出: {stdout.decode('utf-8', errors='replace')[:200]}")

    def get_config_summary(self) -> Dict[str, Any]:
        summary = super().get_config_summary()
        summary['command'] = self.command[0]
        return summary
