"""HTTP 探测器测试"""

import asyncio
import errno
import socket
import pytest
from unittest.mock import Mock, AsyncMock, MagicMock, patch

import aiohttp

from uptime_monitor.models.monitor import FailureReason, ProbeKind
from uptime_monitor.probes.http_probe import HttpProbe, classify_connector_error


def mock_session(status=200, error=None):
    """构造可用于 async with 的 ClientSession 替身"""
    response = MagicMock()
    response.status = status
    response.read = AsyncMock(return_value=b'ok')

    request_context = MagicMock()
    request_context.__aenter__ = AsyncMock(return_value=response)
    request_context.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    if error is not None:
        session.request = Mock(side_effect=error)
    else:
        session.request = Mock(return_value=request_context)

    session_context = MagicMock()
    session_context.__aenter__ = AsyncMock(return_value=session)
    session_context.__aexit__ = AsyncMock(return_value=False)
    return session_context, session


def connector_error(os_error):
    connection_key = Mock(host='example.com', port=443, ssl=True)
    return aiohttp.ClientConnectorError(connection_key, os_error)


class TestHttpProbe:
    """HTTP 探测器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.probe = HttpProbe()

    async def run_probe(self, session_context, **kwargs):
        with patch('aiohttp.ClientSession', return_value=session_context), \
                patch('aiohttp.TCPConnector'):
            return await self.probe.probe('https://example.com/health', 5,
                                          monitor_id='api', **kwargs)

    def test_registered_kind(self):
        """测试注册的探测类型"""
        assert HttpProbe.kind == ProbeKind.HTTP

    @pytest.mark.asyncio
    async def test_success(self):
        """测试 2xx 响应为成功"""
        session_context, session = mock_session(200)

        outcome = await self.run_probe(session_context)

        assert outcome.success is True
        assert outcome.reason is None
        assert outcome.status_code == 200
        assert outcome.monitor_id == 'api'
        assert outcome.kind == ProbeKind.HTTP
        assert outcome.latency >= 0
        session.request.assert_called_once_with('GET', 'https://example.com/health')

    @pytest.mark.asyncio
    async def test_redirect_status_is_success(self):
        """测试 3xx 在默认范围内"""
        session_context, _ = mock_session(301)

        outcome = await self.run_probe(session_context)

        assert outcome.success is True

    @pytest.mark.asyncio
    async def test_server_error(self):
        """测试 500 响应记为 http-error:500"""
        session_context, _ = mock_session(500)

        outcome = await self.run_probe(session_context)

        assert outcome.success is False
        assert outcome.reason == 'http-error:500'
        assert outcome.status_code == 500

    @pytest.mark.asyncio
    async def test_custom_success_codes(self):
        """测试自定义成功状态码范围"""
        session_context, _ = mock_session(404)

        outcome = await self.run_probe(session_context, success_codes=((200, 299), (404, 404)))

        assert outcome.success is True

    @pytest.mark.asyncio
    async def test_timeout(self):
        """测试请求超时"""
        session_context, _ = mock_session(error=asyncio.TimeoutError())

        outcome = await self.run_probe(session_context)

        assert outcome.success is False
        assert outcome.reason == FailureReason.TIMEOUT

    @pytest.mark.asyncio
    async def test_connection_refused(self):
        """测试连接被拒绝"""
        error = connector_error(ConnectionRefusedError(errno.ECONNREFUSED, 'Connection refused'))
        session_context, _ = mock_session(error=error)

        outcome = await self.run_probe(session_context)

        assert outcome.success is False
        assert outcome.reason == FailureReason.CONNECTION_REFUSED

    @pytest.mark.asyncio
    async def test_client_error(self):
        """测试其他客户端错误记为 unknown"""
        session_context, _ = mock_session(error=aiohttp.ServerDisconnectedError())

        outcome = await self.run_probe(session_context)

        assert outcome.success is False
        assert outcome.reason == FailureReason.UNKNOWN


class TestClassifyConnectorError:
    """连接异常分类测试类"""

    def test_dns_failure(self):
        """测试 DNS 解析失败"""
        error = connector_error(socket.gaierror(socket.EAI_NONAME, 'Name or service not known'))
        assert classify_connector_error(error) == FailureReason.DNS_FAILURE

    def test_connection_refused(self):
        """测试连接被拒绝"""
        error = connector_error(ConnectionRefusedError(errno.ECONNREFUSED, 'Connection refused'))
        assert classify_connector_error(error) == FailureReason.CONNECTION_REFUSED

    def test_connect_timeout(self):
        """测试连接超时"""
        error = connector_error(TimeoutError(errno.ETIMEDOUT, 'Connection timed out'))
        assert classify_connector_error(error) == FailureReason.TIMEOUT

    def test_other_os_error(self):
        """测试其他系统错误"""
        error = connector_error(OSError(errno.ENETUNREACH, 'Network is unreachable'))
        assert classify_connector_error(error) == FailureReason.UNKNOWN
