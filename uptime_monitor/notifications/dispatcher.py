"""通知分发器

把一次状态变化扇出到监控配置的所有通知渠道。每个渠道独立发送、独立超时，
任何一个渠道失败都只体现在它自己的发送结果里。
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Any, Optional

from ..models.channel import ChannelType, NotificationChannelConfig
from ..models.monitor import TransitionEvent
from ..utils.exceptions import UptimeMonitorError
from ..utils.log_manager import get_logger
from .base import BaseNotifier, get_notifier_class


@dataclass
class DeliveryResult:
    """单个渠道的发送结果"""
    channel_type: str
    target: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'channel_type': self.channel_type,
            'target': self.target,
            'success': self.success,
            'error': self.error,
        }


class NotificationDispatcher:
    """通知分发器，只发送一次，不做内部重试"""

    def __init__(self, email_transport: Any, webhook_transport: Any, timeout: float = 10):
        """
        初始化通知分发器

        Args:
            email_transport: 邮件传输，``send(to, subject, html_body) -> bool``
            webhook_transport: 推送传输，``send(url, headers, body) -> status_code``
            timeout: 单个渠道的发送超时（秒）
        """
        self.transports = {
            ChannelType.EMAIL: email_transport,
            ChannelType.WEBHOOK: webhook_transport,
        }
        self.timeout = timeout
        self.logger = get_logger('notifications.dispatcher')
        self.stats = {'sent': 0, 'failed': 0}

    def _create_notifier(self, channel: NotificationChannelConfig) -> BaseNotifier:
        notifier_class = get_notifier_class(channel.channel_type)
        return notifier_class(channel, self.transports[channel.channel_type])

    async def dispatch(self, event: TransitionEvent, channels: List[NotificationChannelConfig],
                       monitor_name: Optional[str] = None) -> List[DeliveryResult]:
        """
        向所有渠道发送状态变化通知

        Args:
            event: 状态变化事件
            channels: 通知渠道列表
            monitor_name: 监控名称，缺省使用监控标识

        Returns:
            List[DeliveryResult]: 与渠道顺序一致的发送结果
        """
        if not channels:
            self.logger.debug(f"监控 {event.monitor_id} 没有配置通知渠道，跳过通知")
            return []

        name = monitor_name or event.monitor_id
        self.logger.info(
            f"发送状态变化通知: 监控={name}, "
            f"{event.previous_status.value} -> {event.new_status.value}, 渠道数={len(channels)}")

        results = await asyncio.gather(
            *(self._deliver(channel, lambda notifier: notifier.deliver(event, name))
              for channel in channels)
        )
        self._log_results(name, results)
        return list(results)

    async def test_channel(self, channel: NotificationChannelConfig) -> DeliveryResult:
        """
        验证渠道配置并立即发送一条测试消息，不会抛出异常

        Args:
            channel: 通知渠道配置

        Returns:
            DeliveryResult: 发送结果
        """
        result = await self._deliver(channel, lambda notifier: notifier.send_test())
        if result.success:
            self.logger.info(f"测试消息发送成功: {result.target}")
        else:
            self.logger.warning(f"测试消息发送失败: {result.target}: {result.error}")
        return result

    async def _deliver(self, channel: NotificationChannelConfig, send) -> DeliveryResult:
        channel_type = channel.channel_type.value
        target = channel.describe()

        try:
            channel.validate()
            notifier = self._create_notifier(channel)
            await asyncio.wait_for(send(notifier), self.timeout)
        except asyncio.TimeoutError:
            error = f"发送超时 ({self.timeout}s)"
        except UptimeMonitorError as e:
            error = e.message
        except Exception as e:
            self.logger.error(f"渠道 {target} 发送时发生未预期异常: {e}", exc_info=True)
            error = str(e) or e.__class__.__name__
        else:
            self.stats['sent'] += 1
            return DeliveryResult(channel_type=channel_type, target=target, success=True)

        self.stats['failed'] += 1
        self.logger.warning(f"渠道 {target} 通知发送失败: {error}")
        return DeliveryResult(channel_type=channel_type, target=target, success=False,
                              error=error)

    def _log_results(self, monitor_name: str, results: List[DeliveryResult]):
        succeeded = sum(1 for result in results if result.success)
        if succeeded == len(results):
            self.logger.info(f"监控 {monitor_name} 的通知全部发送成功 ({succeeded}个渠道)")
        else:
            self.logger.warning(
                f"监控 {monitor_name} 的通知部分失败: 成功 {succeeded}/{len(results)}")

