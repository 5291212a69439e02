"""通知器基类与注册表"""

from abc import ABC, abstractmethod
from typing import Dict, Type, Any

from ..models.channel import ChannelType, NotificationChannelConfig
from ..models.monitor import TransitionEvent
from ..utils.exceptions import NotificationConfigError
from ..utils.log_manager import get_logger


class BaseNotifier(ABC):
    """通知器抽象基类

    一个通知器对应一个渠道配置，发送失败时抛出 NotificationError，
    由分发器统一捕获。
    """

    channel_type: ChannelType

    def __init__(self, channel: NotificationChannelConfig, transport: Any):
        """
        初始化通知器

        Args:
            channel: 渠道配置
            transport: 渠道对应的传输层
        """
        self.channel = channel
        self.transport = transport
        self.logger = get_logger(f'notifier.{self.channel_type.value}')

    @abstractmethod
    async def deliver(self, event: TransitionEvent, monitor_name: str) -> None:
        """
        发送状态变化通知

        Args:
            event: 状态变化事件
            monitor_name: 监控名称

        Raises:
            NotificationError: 发送失败
        """
        pass

    @abstractmethod
    async def send_test(self) -> None:
        """
        发送测试消息

        Raises:
            NotificationError: 发送失败
        """
        pass

    @staticmethod
    def render_template(template_str: str, variables: Dict[str, Any]) -> str:
        """使用 {{variable}} 语法渲染模板"""
        rendered = template_str
        for key, value in variables.items():
            rendered = rendered.replace(f'{{{{{key}}}}}', str(value))
        return rendered


_notifiers: Dict[ChannelType, Type[BaseNotifier]] = {}


def register_notifier(channel_type: str):
    """
    装饰器：按渠道类型注册通知器类

    Args:
        channel_type: 渠道类型名称
    """
    def decorator(notifier_class: Type[BaseNotifier]):
        kind = ChannelType(channel_type)
        notifier_class.channel_type = kind
        _notifiers[kind] = notifier_class
        return notifier_class

    return decorator


def get_notifier_class(channel_type: ChannelType) -> Type[BaseNotifier]:
    """获取渠道类型对应的通知器类"""
    notifier_class = _notifiers.get(channel_type)
    if notifier_class is None:
        raise NotificationConfigError(f"不支持的通知渠道类型: {channel_type}")
    return notifier_class
