"""主程序测试"""

import os
import tempfile
import pytest
from datetime import datetime
from unittest.mock import patch, AsyncMock

from main import UptimeMonitorApp, check_once, create_argument_parser, run_channel_test, \
    validate_config_file
from uptime_monitor.models.monitor import ProbeOutcome
from uptime_monitor.notifications.transports import SmtpEmailTransport
from uptime_monitor.probes.executor import ProbeExecutor
from uptime_monitor.storage.json_store import JsonFileStore
from uptime_monitor.storage.memory_store import MemoryStore
from uptime_monitor.utils.exceptions import ConfigError

CONFIG = """
global:
  log_level: WARNING
  max_workers: 2

smtp:
  hostname: smtp.example.com

monitors:
  homepage:
    url: https://example.com
    interval: 30
    notifications:
      - type: email
        address: ops@example.com
  router:
    type: ping
    target: 192.168.1.1
"""


class TestMainApp:
    """主应用程序测试类"""

    def setup_method(self):
        """测试前准备"""
        self.temp_dir = tempfile.mkdtemp()
        self.config_path = self.write_config(CONFIG)

    def teardown_method(self):
        """测试后清理"""
        for root, dirs, files in os.walk(self.temp_dir, topdown=False):
            for name in files:
                os.unlink(os.path.join(root, name))
            for name in dirs:
                os.rmdir(os.path.join(root, name))
        os.rmdir(self.temp_dir)

    def write_config(self, content, name='config.yaml'):
        path = os.path.join(self.temp_dir, name)
        with open(path, 'w', encoding='utf-8') as f:
            f.write(content)
        return path

    def test_argument_parser(self):
        """测试命令行参数解析"""
        parser = create_argument_parser()
        args = parser.parse_args(['--check-once', '--log-level', 'DEBUG', 'config.yaml'])

        assert args.config_file == 'config.yaml'
        assert args.check_once is True
        assert args.log_level == 'DEBUG'
        assert args.validate is False

    def test_validate_config_file(self, capsys):
        """测试验证配置文件"""
        assert validate_config_file(self.config_path) is True
        output = capsys.readouterr().out
        assert '监控数量: 2' in output
        assert 'homepage' in output

    def test_validate_invalid_config_file(self, capsys):
        """测试验证无效配置文件"""
        path = self.write_config("monitors:\n  api:\n    interval: 10\n", 'bad.yaml')

        assert validate_config_file(path) is False
        assert '验证失败' in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_initialize_components(self):
        """测试初始化组件"""
        app = UptimeMonitorApp(self.config_path)
        await app.initialize()

        assert isinstance(app.gateway, MemoryStore)
        assert set(app.gateway.monitors) == {'homepage', 'router'}
        assert app.coordinator.max_workers == 2
        assert app.config_watcher.coordinator is app.coordinator

        status = app.get_status()
        assert status['is_running'] is False
        assert status['notification_stats'] == {'sent': 0, 'failed': 0}

    @pytest.mark.asyncio
    async def test_initialize_with_state_file(self):
        """测试配置状态文件时使用 JSON 文件存储"""
        state_file = os.path.join(self.temp_dir, 'state.json')
        path = self.write_config(CONFIG.replace("max_workers: 2",
                                                f"max_workers: 2\n  state_file: {state_file}"),
                                 'state.yaml')
        app = UptimeMonitorApp(path)
        await app.initialize()

        assert isinstance(app.gateway, JsonFileStore)

    @pytest.mark.asyncio
    async def test_initialize_invalid_config(self):
        """测试配置无效时初始化失败"""
        path = self.write_config("global:\n  max_workers: 0\n", 'bad.yaml')
        app = UptimeMonitorApp(path)

        with pytest.raises(ConfigError):
            await app.initialize()

    @pytest.mark.asyncio
    async def test_config_change_syncs_gateway(self):
        """测试配置变更后同步网关中的监控定义"""
        app = UptimeMonitorApp(self.config_path)
        await app.initialize()
        old_config = app.config_manager.config
        new_config = {'monitors': {'blog': {'url': 'https://blog.example.com'}}}

        app._on_config_changed_callback(old_config, new_config)

        assert set(app.gateway.monitors) == {'blog'}

    @pytest.mark.asyncio
    async def test_check_once(self):
        """测试执行一次探测"""
        outcome = ProbeOutcome(monitor_id='x', success=True, latency=0.01,
                               timestamp=datetime.now())

        with patch.object(ProbeExecutor, 'probe_monitor',
                          AsyncMock(return_value=outcome)) as mock_probe:
            assert await check_once(self.config_path, {}) is True

        assert mock_probe.await_count == 2

    @pytest.mark.asyncio
    async def test_run_channel_test(self):
        """测试向通知渠道发送测试消息"""
        with patch.object(SmtpEmailTransport, 'send', AsyncMock(return_value=True)) as mock_send:
            assert await run_channel_test(self.config_path, {}) is True

        to, subject, _ = mock_send.await_args.args
        assert to == 'ops@example.com'
        assert subject.startswith('[TEST]')

    @pytest.mark.asyncio
    async def test_run_channel_test_failure(self):
        """测试通知渠道测试失败"""
        with patch.object(SmtpEmailTransport, 'send', AsyncMock(return_value=False)):
            assert await run_channel_test(self.config_path, {}) is False
