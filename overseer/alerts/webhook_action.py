"""Webhook通知动作"""

import asyncio
import json
from typing import Dict, Any
from urllib.parse import urlparse

import aiohttp

from .base import BaseAction
from .factory import register_action
from ..models.health_check import AlertEvent
from ..utils.exceptions import NotificationDeliveryError


@register_action('webhook')
class WebhookAction(BaseAction):
    """Webhook通知动作，通过HTTP请求投递状态变化"""

    VALID_METHODS = ['GET', 'POST', 'PUT', 'PATCH']

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化Webhook通知动作

        Args:
            name: 动作名称
            config: 动作配置
        """
        self.url = config.get('url', '')
        self.method = str(config.get('method', 'POST')).upper()
        self.headers = config.get('headers', {})
        self.template = config.get('template', '')
        self.verify_ssl = config.get('verify_ssl', True)
        super().__init__(name, config)

    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        if not self.url:
            self.logger.error(f"Webhook动作 {self.name} 缺少URL配置")
            return False

        parsed_url = urlparse(self.url)
        if parsed_url.scheme not in ('http', 'https') or not parsed_url.netloc:
            self.logger.error(f"Webhook动作 {self.name} URL格式无效: {self.url}")
            return False

        if self.method not in self.VALID_METHODS:
            self.logger.error(
                f"Webhook动作 {self.name} 不支持的HTTP方法: {self.method}, "
                f"支持的方法: {self.VALID_METHODS}"
            )
            return False

        if not isinstance(self.headers, dict):
            self.logger.error(f"Webhook动作 {self.name} headers 必须是字典类型")
            return False

        if self.template is not None and not isinstance(self.template, str):
            return False

        return True

    async def send(self, event: AlertEvent) -> None:
        """
        发送Webhook请求

        Raises:
            NotificationDeliveryError: 请求失败或返回非2xx状态码
        """
        request_data = self._prepare_request_data(event)
        timeout = aiohttp.ClientTimeout(total=self.get_timeout())
        connector = aiohttp.TCPConnector(ssl=None if self.verify_ssl else False)

        try:
            async with aiohttp.ClientSession(timeout=timeout, connector=connector) as session:
                async with session.request(
                        method=self.method,
                        url=self.url,
                        headers=self.headers,
                        **request_data
                ) as response:
                    if 200 <= response.status < 300:
                        self.logger.debug(
                            f"Webhook动作 {self.name} 发送成功 (状态码: {response.status})")
                        return

                    response_text = await response.text()
                    raise NotificationDeliveryError(
                        f"Webhook返回错误响应 (状态码: {response.status}, "
                        f"响应: {response_text[:200]})",
                        action_name=self.name)

        except aiohttp.ClientError as e:
            raise NotificationDeliveryError(f"Webhook请求失败: {e}", action_name=self.name,
                                            cause=e)
        except asyncio.TimeoutError as e:
            raise NotificationDeliveryError("Webhook请求超时", action_name=self.name, cause=e)

    def _prepare_request_data(self, event: AlertEvent) -> Dict[str, Any]:
        """
        准备HTTP请求数据

        Args:
            event: 状态变化事件

        Returns:
            Dict[str, Any]: 请求参数
        """
        if self.method == 'GET':
            return {'params': {
                'target_id': event.target_id,
                'from_status': event.from_status.value,
                'to_status': event.to_status.value,
                'timestamp': event.timestamp.isoformat()
            }}

        if not self.template:
            return {'json': self.create_default_payload(event)}

        is_json_template = self.template.strip().startswith('{')
        rendered = self.render_template(self.template, event, json_escape=is_json_template)
        if is_json_template:
            try:
                return {'json': json.loads(rendered)}
            except json.JSONDecodeError as e:
                raise NotificationDeliveryError(f"渲染后的JSON格式无效: {e}",
                                                action_name=self.name, cause=e)
        return {'data': rendered}

    @staticmethod
    def create_default_payload(event: AlertEvent) -> Dict[str, Any]:
        """默认JSON负载"""
        payload = event.to_dict()
        payload['recovered'] = event.is_recovery
        return payload

    def get_config_summary(self) -> Dict[str, Any]:
        summary = super().get_config_summary()
        summary.update({
            'url': self.url,
            'method': self.method,
            'has_template': bool(self.template),
            'headers_count': len(self.headers)
        })
        return summary
