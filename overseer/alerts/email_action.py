"""邮件通知动作"""

import re
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Dict, Any

import aiosmtplib

from .base import BaseAction
from .factory import register_action
from ..models.health_check import AlertEvent
from ..utils.exceptions import NotificationDeliveryError

_EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')

DEFAULT_SUBJECT = '[overseer] {{target_id}}: {{from_status}} -> {{to_status}}'
DEFAULT_BODY = """目标健康状态变化通知

目标: {{target_id}}
状态变化: {{from_status}} -> {{to_status}}
发生时间: {{timestamp}}
探测结果: {{outcome}}
延迟: {{latency}}ms
详情: {{message}}

---
此邮件由 overseer 自动发送，请勿回复。
"""


@register_action('email')
class EmailAction(BaseAction):
    """邮件通知动作，通过SMTP发送状态变化"""

    def __init__(self, name: str, config: Dict[str, Any]):
        """
        初始化邮件通知动作

        Args:
            name: 动作名称
            config: 动作配置
        """
        self.smtp_server = config.get('smtp_server', '')
        self.smtp_port = config.get('smtp_port', 587)
        self.username = config.get('username', '')
        self.password = config.get('password', '')
        self.use_tls = config.get('use_tls', False)
        self.start_tls = config.get('start_tls', True)

        self.from_email = config.get('from_email', self.username)
        self.from_name = config.get('from_name', 'overseer')
        self.to_emails = config.get('to_emails', [])
        self.cc_emails = config.get('cc_emails', [])

        self.subject_template = config.get('subject_template', DEFAULT_SUBJECT)
        self.body_template = config.get('body_template', DEFAULT_BODY)
        super().__init__(name, config)

    def validate_config(self) -> bool:
        """
        验证配置参数是否有效

        Returns:
            bool: 配置是否有效
        """
        if not self.smtp_server:
            self.logger.error(f"邮件动作 {self.name} 缺少SMTP服务器配置")
            return False

        if not self.from_email:
            self.logger.error(f"邮件动作 {self.name} 缺少发件人邮箱配置")
            return False

        if not isinstance(self.to_emails, list) or not self.to_emails:
            self.logger.error(f"邮件动作 {self.name} 缺少收件人邮箱配置")
            return False

        for email in self.to_emails + list(self.cc_emails) + [self.from_email]:
            if not _EMAIL_PATTERN.match(str(email)):
                self.logger.error(f"邮件动作 {self.name} 邮箱格式无效: {email}")
                return False

        if not isinstance(self.smtp_port, int) or not 0 < self.smtp_port <= 65535:
            self.logger.error(f"邮件动作 {self.name} SMTP端口无效: {self.smtp_port}")
            return False

        if self.use_tls and self.start_tls:
            self.logger.error(f"邮件动作 {self.name} 不能同时启用 use_tls 和 start_tls")
            return False

        return True

    def create_email_message(self, event: AlertEvent) -> MIMEMultipart:
        """
        创建邮件消息

        Args:
            event: 状态变化事件

        Returns:
            MIMEMultipart: 邮件消息对象
        """
        email_msg = MIMEMultipart()
        email_msg['From'] = formataddr((self.from_name, self.from_email))
        email_msg['To'] = ', '.join(self.to_emails)
        if self.cc_emails:
            email_msg['Cc'] = ', '.join(self.cc_emails)
        email_msg['Subject'] = self.render_template(self.subject_template, event)
        email_msg.attach(MIMEText(self.render_template(self.body_template, event),
                                  'plain', 'utf-8'))
        return email_msg

    async def send(self, event: AlertEvent) -> None:
        """
        发送邮件

        Raises:
            NotificationDeliveryError: SMTP发送失败
        """
        email_msg = self.create_email_message(event)

        smtp_kwargs = {
            'hostname': self.smtp_server,
            'port': self.smtp_port,
            'timeout': self.get_timeout(),
            'use_tls': self.use_tls,
            'start_tls': self.start_tls,
        }
        if self.username:
            smtp_kwargs['username'] = self.username
            smtp_kwargs['password'] = self.password

        try:
            await aiosmtplib.send(email_msg, **smtp_kwargs)
        except (aiosmtplib.SMTPException, OSError) as e:
            raise NotificationDeliveryError(f"SMTP发送失败: {e}", action_name=self.name,
                                            cause=e)

        self.logger.debug(f"邮件发送成功: {self.from_email} -> {', '.join(self.to_emails)}")

    def get_config_summary(self) -> Dict[str, Any]:
        summary = super().get_config_summary()
        summary.update({
            'smtp_server': self.smtp_server,
            'smtp_port': self.smtp_port,
            'from_email': self.from_email,
            'to_emails_count': len(self.to_emails)
        })
        return summary
