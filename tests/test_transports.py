"""通知传输层测试"""

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import aiosmtplib

from uptime_monitor.notifications.transports import HttpWebhookTransport, SmtpEmailTransport
from uptime_monitor.utils.exceptions import NotificationError


class TestSmtpEmailTransport:
    """SMTP 传输测试类"""

    def setup_method(self):
        """测试前准备"""
        self.transport = SmtpEmailTransport({
            'hostname': 'smtp.example.com',
            'port': 465,
            'username': 'monitor@example.com',
            'password': 'secret',
            'use_tls': True,
        })

    @pytest.mark.asyncio
    async def test_send(self):
        """测试发送邮件"""
        with patch('aiosmtplib.send', new_callable=AsyncMock) as mock_send:
            assert await self.transport.send('ops@example.com', '[DOWN] API', '<p>down</p>')

        message = mock_send.await_args.args[0]
        kwargs = mock_send.await_args.kwargs
        assert message['To'] == 'ops@example.com'
        assert message['Subject'] == '[DOWN] API'
        assert 'monitor@example.com' in message['From']
        assert kwargs['hostname'] == 'smtp.example.com'
        assert kwargs['port'] == 465
        assert kwargs['use_tls'] is True

    @pytest.mark.asyncio
    async def test_smtp_failure(self):
        """测试 SMTP 发送失败"""
        with patch('aiosmtplib.send', new_callable=AsyncMock,
                   side_effect=aiosmtplib.SMTPException("auth failed")):
            with pytest.raises(NotificationError, match="SMTP发送失败"):
                await self.transport.send('ops@example.com', 'subject', 'body')

    @pytest.mark.asyncio
    async def test_missing_hostname(self):
        """测试未配置 SMTP 服务器"""
        transport = SmtpEmailTransport({})

        with pytest.raises(NotificationError, match="未配置SMTP服务器"):
            await transport.send('ops@example.com', 'subject', 'body')


class TestHttpWebhookTransport:
    """推送传输测试类"""

    def make_session(self, status=200, error=None):
        response = MagicMock()
        response.status = status
        response.text = AsyncMock(return_value='{"id":"abc"}')

        post_context = MagicMock()
        post_context.__aenter__ = AsyncMock(return_value=response)
        post_context.__aexit__ = AsyncMock(return_value=False)

        session = MagicMock()
        if error is not None:
            session.post = MagicMock(side_effect=error)
        else:
            session.post = MagicMock(return_value=post_context)
        return session

    @pytest.mark.asyncio
    async def test_post(self):
        """测试发送推送请求"""
        session = self.make_session(200)
        transport = HttpWebhookTransport(session=session)

        status = await transport.send('https://ntfy.sh/alerts', {'Title': 'API'}, 'API is DOWN')

        assert status == 200
        url = session.post.call_args.args[0]
        kwargs = session.post.call_args.kwargs
        assert url == 'https://ntfy.sh/alerts'
        assert kwargs['headers'] == {'Title': 'API'}
        assert kwargs['data'] == 'API is DOWN'.encode('utf-8')

    @pytest.mark.asyncio
    async def test_error_status_returned(self):
        """测试非成功状态码原样返回"""
        transport = HttpWebhookTransport(session=self.make_session(401))

        assert await transport.send('https://ntfy.sh/alerts', {}, 'body') == 401

    @pytest.mark.asyncio
    async def test_client_error(self):
        """测试请求异常转换为 NotificationError"""
        session = self.make_session(error=aiohttp.ClientConnectionError("refused"))
        transport = HttpWebhookTransport(session=session)

        with pytest.raises(NotificationError, match="推送请求失败"):
            await transport.send('https://ntfy.sh/alerts', {}, 'body')
