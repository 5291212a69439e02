"""通知分发器测试模块"""

import asyncio
import base64
import pytest
from datetime import datetime
from unittest.mock import AsyncMock

from uptime_monitor.models.channel import (AuthMode, EmailChannelConfig, WebhookChannelConfig,
                                           channel_config_from_dict)
from uptime_monitor.models.monitor import (FailureReason, MonitorStatus, ProbeOutcome,
                                           TransitionEvent)
from uptime_monitor.notifications.dispatcher import NotificationDispatcher
from uptime_monitor.notifications.webhook_notifier import TEST_MESSAGE, build_headers
from uptime_monitor.utils.exceptions import NotificationError


def make_event(new_status=MonitorStatus.DOWN, previous_status=MonitorStatus.UP):
    """创建状态变化事件"""
    timestamp = datetime(2024, 3, 1, 8, 30, 0)
    outcome = ProbeOutcome(
        monitor_id='api',
        success=new_status == MonitorStatus.UP,
        latency=0.25,
        timestamp=timestamp,
        reason=None if new_status == MonitorStatus.UP else FailureReason.http_error(500),
        message='HTTP状态码不在成功范围内: 500',
        target='https://example.com/health'
    )
    return TransitionEvent(monitor_id='api', previous_status=previous_status,
                           new_status=new_status, timestamp=timestamp, outcome=outcome)


class TestNotificationDispatcher:
    """通知分发器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.email_transport = AsyncMock()
        self.email_transport.send = AsyncMock(return_value=True)
        self.webhook_transport = AsyncMock()
        self.webhook_transport.send = AsyncMock(return_value=200)
        self.dispatcher = NotificationDispatcher(self.email_transport, self.webhook_transport,
                                                 timeout=0.5)
        self.email = EmailChannelConfig(address='ops@example.com')
        self.webhook = WebhookChannelConfig(server_url='https://ntfy.example.com/',
                                            topic='alerts')

    @pytest.mark.asyncio
    async def test_dispatch_to_all_channels(self):
        """测试向所有渠道发送"""
        results = await self.dispatcher.dispatch(make_event(), [self.email, self.webhook],
                                                 'API 服务')

        assert [result.success for result in results] == [True, True]
        assert [result.channel_type for result in results] == ['email', 'webhook']
        self.email_transport.send.assert_awaited_once()
        self.webhook_transport.send.assert_awaited_once()
        assert self.dispatcher.stats == {'sent': 2, 'failed': 0}

    @pytest.mark.asyncio
    async def test_no_channels(self):
        """测试没有渠道时直接返回"""
        assert await self.dispatcher.dispatch(make_event(), []) == []

    @pytest.mark.asyncio
    async def test_failed_channel_does_not_block_others(self):
        """测试一个渠道失败不影响其他渠道"""
        self.email_transport.send = AsyncMock(
            side_effect=NotificationError("SMTP发送失败: 连接被拒绝", channel_type='email'))

        results = await self.dispatcher.dispatch(make_event(), [self.email, self.webhook])

        assert results[0].success is False
        assert 'SMTP' in results[0].error
        assert results[1].success is True
        self.webhook_transport.send.assert_awaited_once()
        assert self.dispatcher.stats == {'sent': 1, 'failed': 1}

    @pytest.mark.asyncio
    async def test_unexpected_exception_isolated(self):
        """测试未预期异常也只影响单个渠道"""
        self.webhook_transport.send = AsyncMock(side_effect=RuntimeError("boom"))

        results = await self.dispatcher.dispatch(make_event(), [self.webhook, self.email])

        assert results[0].success is False
        assert results[0].error == 'boom'
        assert results[1].success is True

    @pytest.mark.asyncio
    async def test_slow_channel_times_out(self):
        """测试单个渠道超时"""
        async def slow_send(*args):
            await asyncio.sleep(5)
            return True

        self.email_transport.send = AsyncMock(side_effect=slow_send)
        dispatcher = NotificationDispatcher(self.email_transport, self.webhook_transport,
                                            timeout=0.05)

        results = await dispatcher.dispatch(make_event(), [self.email, self.webhook])

        assert results[0].success is False
        assert '超时' in results[0].error
        assert results[1].success is True

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self):
        """测试推送服务返回非 2xx 状态码视为失败"""
        self.webhook_transport.send = AsyncMock(return_value=403)

        results = await self.dispatcher.dispatch(make_event(), [self.webhook])

        assert results[0].success is False
        assert '403' in results[0].error

    @pytest.mark.asyncio
    async def test_no_retry(self):
        """测试失败后不在内部重试"""
        self.webhook_transport.send = AsyncMock(return_value=500)

        await self.dispatcher.dispatch(make_event(), [self.webhook])

        assert self.webhook_transport.send.await_count == 1

    @pytest.mark.asyncio
    async def test_email_subject_and_body(self):
        """测试邮件主题和正文"""
        await self.dispatcher.dispatch(make_event(), [self.email], 'API 服务')

        to, subject, body = self.email_transport.send.await_args.args
        assert to == 'ops@example.com'
        assert subject == '[DOWN] API 服务'
        assert 'https://example.com/health' in body
        assert 'http-error:500' in body
        assert '250ms' in body
        assert '{{' not in body

    @pytest.mark.asyncio
    async def test_email_body_escapes_html(self):
        """测试邮件正文中的监控名称被转义"""
        await self.dispatcher.dispatch(make_event(), [self.email], '<b>API</b> & 网关')

        _, subject, body = self.email_transport.send.await_args.args
        assert subject == '[DOWN] <b>API</b> & 网关'
        assert '&lt;b&gt;API&lt;/b&gt; &amp; 网关' in body
        assert '<b>API</b>' not in body

    @pytest.mark.asyncio
    async def test_webhook_down_message(self):
        """测试推送消息内容和请求头"""
        await self.dispatcher.dispatch(make_event(), [self.webhook], 'API 服务')

        url, headers, body = self.webhook_transport.send.await_args.args
        assert url == 'https://ntfy.example.com/alerts'
        assert headers['Title'] == 'API 服务'
        assert headers['Tags'] == 'warning'
        assert headers['Priority'] == '5'
        assert 'Authorization' not in headers
        assert body.startswith('API 服务 (https://example.com/health) is DOWN at 2024-03-01 08:30:00')
        assert 'http-error:500' in body

    @pytest.mark.asyncio
    async def test_webhook_recovery_message(self):
        """测试恢复消息"""
        event = make_event(MonitorStatus.UP, MonitorStatus.DOWN)

        await self.dispatcher.dispatch(event, [self.webhook], 'API 服务')

        _, headers, body = self.webhook_transport.send.await_args.args
        assert headers['Tags'] == 'white_check_mark'
        assert body == 'API 服务 (https://example.com/health) is UP at 2024-03-01 08:30:00'

    @pytest.mark.asyncio
    async def test_test_channel_webhook(self):
        """测试推送渠道测试消息"""
        result = await self.dispatcher.test_channel(self.webhook)

        assert result.success is True
        _, headers, body = self.webhook_transport.send.await_args.args
        assert body == TEST_MESSAGE
        assert headers['Title'] == 'Monitor Alert'

    @pytest.mark.asyncio
    async def test_test_channel_email(self):
        """测试邮件渠道测试消息"""
        result = await self.dispatcher.test_channel(self.email)

        assert result.success is True
        assert self.email_transport.send.await_args.args[1].startswith('[TEST]')

    @pytest.mark.asyncio
    async def test_bearer_webhook_with_malformed_url(self):
        """测试 bearer 认证加畸形地址：测试失败但不抛出，后续分发不崩溃"""
        channel = channel_config_from_dict({
            'type': 'ntfy',
            'ntfyConfig': {
                'serverUrl': 'ht!tp:/broken url',
                'topic': 'alerts',
                'authMode': 'accessToken',
                'accessToken': 'tk_secret',
            }
        })
        assert channel.auth_mode == AuthMode.BEARER

        result = await self.dispatcher.test_channel(channel)
        assert result.success is False
        assert result.error

        results = await self.dispatcher.dispatch(make_event(), [channel, self.email])
        assert results[0].success is False
        assert results[1].success is True
        self.webhook_transport.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_email_channel(self):
        """测试邮箱格式无效"""
        result = await self.dispatcher.test_channel(EmailChannelConfig(address='not-an-email'))

        assert result.success is False
        self.email_transport.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_email_transport_returns_false(self):
        """测试邮件传输返回 False 视为失败"""
        self.email_transport.send = AsyncMock(return_value=False)

        result = await self.dispatcher.test_channel(self.email)

        assert result.success is False
        assert 'ops@example.com' in result.error


class TestBuildHeaders:
    """推送请求头测试类"""

    def test_bearer_header(self):
        """测试 bearer 认证头"""
        channel = WebhookChannelConfig(server_url='https://ntfy.sh', topic='t',
                                       auth_mode=AuthMode.BEARER, token='tk_abc', priority=4)

        headers = build_headers(channel, 'Title', 'warning')

        assert headers['Authorization'] == 'Bearer tk_abc'
        assert headers['Priority'] == '4'
        assert headers['Content-Type'] == 'text/plain'

    def test_basic_header(self):
        """测试 basic 认证头"""
        channel = WebhookChannelConfig(server_url='https://ntfy.sh', topic='t',
                                       auth_mode=AuthMode.BASIC, username='user',
                                       password='pass')

        headers = build_headers(channel, 'Title', 'warning')

        expected = base64.b64encode(b'user:pass').decode('ascii')
        assert headers['Authorization'] == f'Basic {expected}'
