"""通知模块"""

from .base import BaseNotifier, register_notifier, get_notifier_class
from .dispatcher import NotificationDispatcher, DeliveryResult
from .email_notifier import EmailNotifier
from .transports import SmtpEmailTransport, HttpWebhookTransport
from .webhook_notifier import WebhookNotifier, build_headers

__all__ = ['BaseNotifier', 'register_notifier', 'get_notifier_class',
           'NotificationDispatcher', 'DeliveryResult', 'EmailNotifier', 'WebhookNotifier',
           'build_headers', 'SmtpEmailTransport', 'HttpWebhookTransport']
