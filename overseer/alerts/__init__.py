"""通知模块"""

from .base import BaseAction
from .factory import ActionFactory, action_factory, register_action
from .notifier import Notifier
from .webhook_action import WebhookAction
from .email_action import EmailAction
from .exec_action import ExecAction
from .log_action import LogAction

__all__ = ['BaseAction', 'ActionFactory', 'action_factory', 'register_action', 'Notifier',
           'WebhookAction', 'EmailAction', 'ExecAction', 'LogAction']
