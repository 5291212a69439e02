"""通知渠道配置模型

每种渠道是一个不可变的数据类，只携带该渠道需要的字段；
编辑时整体替换，不做原地修改。
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Any, ClassVar
from urllib.parse import urlparse

from ..utils.exceptions import NotificationConfigError

EMAIL_PATTERN = re.compile(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$')


class ChannelType(Enum):
    """通知渠道类型"""
    EMAIL = "email"
    WEBHOOK = "webhook"


class AuthMode(Enum):
    """推送渠道认证方式"""
    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"

    @classmethod
    def parse(cls, value: Any) -> 'AuthMode':
        """解析认证方式，兼容前端使用的 no-auth / user-pass / accessToken 写法"""
        if isinstance(value, AuthMode):
            return value

        aliases = {
            '': cls.NONE,
            'none': cls.NONE,
            'no-auth': cls.NONE,
            'basic': cls.BASIC,
            'user-pass': cls.BASIC,
            'bearer': cls.BEARER,
            'bearer-token': cls.BEARER,
            'token': cls.BEARER,
            'accesstoken': cls.BEARER,
        }
        key = str(value or '').strip().lower()
        if key not in aliases:
            raise NotificationConfigError(f"不支持的认证方式: {value}", channel_type='webhook')
        return aliases[key]


class NotificationChannelConfig(ABC):
    """通知渠道配置基类"""

    channel_type: ClassVar[ChannelType]

    @abstractmethod
    def validate(self) -> None:
        """
        验证配置

        Raises:
            NotificationConfigError: 配置无效
        """
        pass

    @abstractmethod
    def describe(self) -> str:
        """用于日志的渠道描述（不含凭据）"""
        pass

    @abstractmethod
    def to_dict(self) -> Dict[str, Any]:
        """转换为配置字典"""
        pass


@dataclass(frozen=True)
class EmailChannelConfig(NotificationChannelConfig):
    """邮件渠道"""
    address: str

    channel_type: ClassVar[ChannelType] = ChannelType.EMAIL

    def validate(self) -> None:
        if not self.address or not EMAIL_PATTERN.match(self.address):
            raise NotificationConfigError(
                f"邮箱地址格式无效: {self.address!r}", channel_type='email')

    def describe(self) -> str:
        return f"email:{self.address}"

    def to_dict(self) -> Dict[str, Any]:
        return {'type': 'email', 'address': self.address}


@dataclass(frozen=True)
class WebhookChannelConfig(NotificationChannelConfig):
    """推送/Webhook 渠道（兼容 ntfy 协议）"""
    server_url: str
    topic: str
    auth_mode: AuthMode = AuthMode.NONE
    username: str = ''
    password: str = ''
    token: str = ''
    priority: int = 5
    title: str = ''

    channel_type: ClassVar[ChannelType] = ChannelType.WEBHOOK

    def validate(self) -> None:
        try:
            parsed_url = urlparse(self.server_url or '')
        except ValueError as e:
            raise NotificationConfigError(
                f"推送服务地址解析失败: {e}", channel_type='webhook')

        if parsed_url.scheme not in ('http', 'https') or not parsed_url.netloc:
            raise NotificationConfigError(
                f"推送服务地址格式无效: {self.server_url!r}", channel_type='webhook')

        topic = (self.topic or '').strip('/')
        if not topic or '/' in topic or any(c.isspace() for c in topic):
            raise NotificationConfigError(
                f"推送主题无效: {self.topic!r}", channel_type='webhook')

        if self.auth_mode == AuthMode.BASIC and not (self.username and self.password):
            raise NotificationConfigError(
                "basic 认证缺少用户名或密码", channel_type='webhook')

        if self.auth_mode == AuthMode.BEARER and not self.token:
            raise NotificationConfigError(
                "bearer 认证缺少访问令牌", channel_type='webhook')

        if not isinstance(self.priority, int) or not 1 <= self.priority <= 5:
            raise NotificationConfigError(
                f"推送优先级必须是1-5之间的整数: {self.priority!r}", channel_type='webhook')

    def destination_url(self) -> str:
        """服务地址（去掉末尾斜杠）拼接主题"""
        return f"{self.server_url.rstrip('/')}/{self.topic.strip('/')}"

    def describe(self) -> str:
        return f"webhook:{self.destination_url()}"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['type'] = 'webhook'
        data['auth_mode'] = self.auth_mode.value
        return data


def channel_config_from_dict(data: Dict[str, Any]) -> NotificationChannelConfig:
    """
    从配置字典创建渠道配置

    支持两种写法：
    - ``{'type': 'email', 'address': 'ops@example.com'}``
    - ``{'type': 'ntfy', 'ntfyConfig': {...}}`` 或扁平的 ``{'type': 'webhook', 'server_url': ...}``

    Raises:
        NotificationConfigError: 渠道类型或认证方式无法识别
    """
    if not isinstance(data, dict):
        raise NotificationConfigError("通知渠道配置必须是字典类型")

    channel_type = str(data.get('type', '')).lower()

    if channel_type == 'email':
        return EmailChannelConfig(address=str(data.get('address', '')).strip())

    if channel_type in ('webhook', 'ntfy', 'push'):
        settings = data.get('ntfyConfig') or data
        priority = settings.get('priority', 5)
        try:
            priority = int(priority)
        except (TypeError, ValueError):
            raise NotificationConfigError(
                f"推送优先级必须是整数: {priority!r}", channel_type='webhook')

        return WebhookChannelConfig(
            server_url=str(settings.get('server_url') or settings.get('serverUrl') or ''),
            topic=str(settings.get('topic', '')),
            auth_mode=AuthMode.parse(settings.get('auth_mode', settings.get('authMode'))),
            username=str(settings.get('username', '') or ''),
            password=str(settings.get('password', '') or ''),
            token=str(settings.get('token') or settings.get('accessToken') or ''),
            priority=priority,
            title=str(settings.get('title') or settings.get('friendlyName') or ''),
        )

    raise NotificationConfigError(f"不支持的通知渠道类型: {data.get('type')!r}")
