"""推送(Webhook)通知器，兼容 ntfy 协议"""

import base64
from typing import Dict

from ..models.channel import AuthMode, WebhookChannelConfig
from ..models.monitor import MonitorStatus, TransitionEvent
from ..utils.exceptions import NotificationError
from .base import BaseNotifier, register_notifier

DEFAULT_TITLE = 'Monitor Alert'
TEST_MESSAGE = 'This is a test message from your Ntfy setup.'


def build_headers(channel: WebhookChannelConfig, title: str, tags: str) -> Dict[str, str]:
    """
    构造推送请求头

    Args:
        channel: 推送渠道配置
        title: 消息标题
        tags: 消息标签

    Returns:
        Dict[str, str]: 请求头
    """
    headers = {
        'Title': title,
        'Priority': str(channel.priority),
        'Tags': tags,
        'Content-Type': 'text/plain',
    }

    if channel.auth_mode == AuthMode.BASIC:
        credentials = f"{channel.username}:{channel.password}".encode('utf-8')
        headers['Authorization'] = f"Basic {base64.b64encode(credentials).decode('ascii')}"
    elif channel.auth_mode == AuthMode.BEARER:
        headers['Authorization'] = f"Bearer {channel.token}"

    return headers


@register_notifier('webhook')
class WebhookNotifier(BaseNotifier):
    """推送通知器，2xx 响应视为成功"""

    channel: WebhookChannelConfig

    def _body(self, event: TransitionEvent, monitor_name: str) -> str:
        outcome = event.outcome
        timestamp = event.timestamp.strftime('%Y-%m-%d %H:%M:%S')
        if event.new_status == MonitorStatus.DOWN:
            return (f"{monitor_name} ({outcome.target}) is DOWN at {timestamp}: "
                    f"{outcome.reason or 'unknown'} {outcome.message}".rstrip())
        return f"{monitor_name} ({outcome.target}) is UP at {timestamp}"

    async def deliver(self, event: TransitionEvent, monitor_name: str) -> None:
        tags = 'warning' if event.new_status == MonitorStatus.DOWN else 'white_check_mark'
        headers = build_headers(self.channel, self.channel.title or monitor_name or DEFAULT_TITLE,
                                tags)
        await self._post(headers, self._body(event, monitor_name))

    async def send_test(self) -> None:
        headers = build_headers(self.channel, self.channel.title or DEFAULT_TITLE, 'warning')
        await self._post(headers, TEST_MESSAGE)

    async def _post(self, headers: Dict[str, str], body: str) -> None:
        url = self.channel.destination_url()
        status_code = await self.transport.send(url, headers, body)
        if not 200 <= status_code < 300:
            raise NotificationError(f"推送服务返回非成功状态码: {status_code}",
                                    channel_type='webhook',
                                    details={'status_code': status_code})
        self.logger.info(f"推送通知已发送: {url}")
