"""Ping 探测器测试"""

import socket
import pytest
from unittest.mock import AsyncMock, patch

from uptime_monitor.models.monitor import FailureReason, ProbeKind
from uptime_monitor.probes.ping_probe import PingProbe


class TestPingProbe:
    """Ping 探测器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.probe = PingProbe({'ping_count': 1})
        self.probe._resolve = AsyncMock(return_value='192.0.2.10')

    def test_registered_kind(self):
        """测试注册的探测类型"""
        assert PingProbe.kind == ProbeKind.PING

    def test_count_has_minimum(self):
        """测试回显请求次数至少为1"""
        assert PingProbe({'ping_count': 0}).count == 1

    @pytest.mark.asyncio
    async def test_reply(self):
        """测试收到回复"""
        with patch('ping3.ping', return_value=0.012) as mock_ping:
            outcome = await self.probe.probe('router.local', 2, monitor_id='router')

        assert outcome.success is True
        assert outcome.kind == ProbeKind.PING
        assert outcome.target == 'router.local'
        assert '192.0.2.10' in outcome.message
        assert mock_ping.call_args.args[0] == '192.0.2.10'
        assert mock_ping.call_args.kwargs['unit'] == 's'

    @pytest.mark.asyncio
    async def test_timeout(self):
        """测试没有回复记为超时"""
        with patch('ping3.ping', return_value=None):
            outcome = await self.probe.probe('router.local', 1, monitor_id='router')

        assert outcome.success is False
        assert outcome.reason == FailureReason.TIMEOUT

    @pytest.mark.asyncio
    async def test_send_error(self):
        """测试发送失败记为 unknown"""
        with patch('ping3.ping', return_value=False):
            outcome = await self.probe.probe('router.local', 1, monitor_id='router')

        assert outcome.success is False
        assert outcome.reason == FailureReason.UNKNOWN

    @pytest.mark.asyncio
    async def test_unresolvable_host(self):
        """测试主机名无法解析"""
        self.probe._resolve = AsyncMock(
            side_effect=socket.gaierror(socket.EAI_NONAME, 'Name or service not known'))

        with patch('ping3.ping') as mock_ping:
            outcome = await self.probe.probe('no-such-host.invalid', 1, monitor_id='router')

        assert outcome.success is False
        assert outcome.reason == FailureReason.UNRESOLVABLE
        mock_ping.assert_not_called()

    @pytest.mark.asyncio
    async def test_any_reply_is_success(self):
        """测试多个请求中只要有一个回复即为成功"""
        probe = PingProbe({'ping_count': 3})
        probe._resolve = AsyncMock(return_value='192.0.2.10')

        with patch('ping3.ping', side_effect=[None, None, 0.02]) as mock_ping:
            outcome = await probe.probe('router.local', 3, monitor_id='router')

        assert outcome.success is True
        assert mock_ping.call_count == 3
        assert [call.kwargs['seq'] for call in mock_ping.call_args_list] == [0, 1, 2]
