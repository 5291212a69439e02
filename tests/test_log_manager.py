"""日志管理器测试"""

import logging
import os
import tempfile
import pytest

from uptime_monitor.utils.log_manager import LogLevel, LogManager, configure_logging, get_logger


class TestLogManager:
    """日志管理器测试类"""

    def setup_method(self):
        """测试前准备"""
        self.temp_dir = tempfile.mkdtemp()
        self.log_file = os.path.join(self.temp_dir, 'logs', 'monitor.log')
        self.manager = LogManager()

    def teardown_method(self):
        """测试后清理，恢复默认配置"""
        configure_logging({'log_level': 'INFO', 'log_file': None, 'enable_console': True})
        for root, dirs, files in os.walk(self.temp_dir, topdown=False):
            for name in files:
                os.unlink(os.path.join(root, name))
            for name in dirs:
                os.rmdir(os.path.join(root, name))
        os.rmdir(self.temp_dir)

    def test_singleton(self):
        """测试单例模式"""
        assert LogManager() is self.manager

    def test_logger_namespace(self):
        """测试记录器挂在统一命名空间下"""
        logger = get_logger('probe.http')

        assert logger.name == 'uptime_monitor.probe.http'
        assert get_logger('probe.http') is logger
        assert logger.propagate is False

    def test_file_logging(self):
        """测试写入日志文件"""
        configure_logging({'log_level': 'DEBUG', 'log_file': self.log_file,
                           'enable_console': False})
        logger = get_logger('test.file')

        logger.debug("调试信息")
        logger.info("探测完成")
        for handler in logger.handlers:
            handler.flush()

        with open(self.log_file, 'r', encoding='utf-8') as f:
            content = f.read()
        assert '调试信息' in content
        assert '探测完成' in content
        assert 'uptime_monitor.test.file' in content

    def test_reconfigure_updates_existing_loggers(self):
        """测试重新配置时更新已创建的记录器"""
        logger = get_logger('test.reconfigure')
        configure_logging({'log_level': 'ERROR', 'enable_console': True})

        assert logger.level == logging.ERROR
        assert len(logger.handlers) == 1

    def test_set_level(self):
        """测试运行时调整日志级别"""
        logger = get_logger('test.level')

        self.manager.set_level(LogLevel.WARNING)

        assert logger.level == logging.WARNING
        assert all(handler.level == logging.WARNING for handler in logger.handlers)
        assert self.manager.get_log_stats()['log_level'] == 'WARNING'

    def test_invalid_level(self):
        """测试无效的日志级别"""
        with pytest.raises(ValueError, match="无效的日志级别"):
            configure_logging({'log_level': 'LOUD'})

    def test_log_stats(self):
        """测试日志配置摘要"""
        configure_logging({'log_file': self.log_file, 'backup_count': 2})
        stats = self.manager.get_log_stats()

        assert stats['log_file'] == self.log_file
        assert stats['backup_count'] == 2
        assert stats['loggers_count'] >= 1
