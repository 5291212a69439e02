"""重试机制和异常测试"""

import pytest
from unittest.mock import AsyncMock, Mock, patch

from uptime_monitor.utils.error_handler import (RetryConfig, RetryHandler, RetryStrategy,
                                                retry_async, retry_on_error)
from uptime_monitor.utils.exceptions import (ConfigError, ErrorCode, NotificationConfigError,
                                             NotificationError, PersistenceError)


class TestRetryHandler:
    """重试处理器测试类"""

    def test_exponential_delay(self):
        """测试指数退避"""
        handler = RetryHandler(RetryConfig(base_delay=1, jitter=False, max_delay=5))

        assert [handler.calculate_delay(n) for n in (1, 2, 3, 4)] == [1, 2, 4, 5]

    def test_fixed_and_linear_delay(self):
        """测试固定延迟和线性退避"""
        fixed = RetryHandler(RetryConfig(base_delay=2, jitter=False,
                                         strategy=RetryStrategy.FIXED_DELAY))
        linear = RetryHandler(RetryConfig(base_delay=2, jitter=False,
                                          strategy=RetryStrategy.LINEAR_BACKOFF))

        assert fixed.calculate_delay(3) == 2
        assert linear.calculate_delay(3) == 6

    def test_jitter_range(self):
        """测试抖动范围"""
        handler = RetryHandler(RetryConfig(base_delay=1, jitter=True))

        for _ in range(20):
            assert 0.5 <= handler.calculate_delay(1) <= 1.0

    def test_should_retry(self):
        """测试重试判断"""
        handler = RetryHandler(RetryConfig(max_attempts=3))

        assert handler.should_retry(PersistenceError("busy"), 1)
        assert handler.should_retry(ConnectionError(), 1)
        assert not handler.should_retry(PersistenceError("busy"), 3)
        assert not handler.should_retry(ConfigError("bad"), 1)
        assert not handler.should_retry(ValueError(), 1)

    def test_retryable_errors(self):
        """测试指定可重试异常类型"""
        handler = RetryHandler(RetryConfig(retryable_errors=[KeyError]))

        assert handler.should_retry(KeyError(), 1)
        assert not handler.should_retry(ConnectionError(), 1)


class TestRetryAsync:
    """异步重试测试类"""

    def setup_method(self):
        """测试前准备"""
        self.config = RetryConfig(max_attempts=3, base_delay=0.001, jitter=False)

    @pytest.mark.asyncio
    async def test_success_after_failures(self):
        """测试失败后重试成功"""
        func = AsyncMock(side_effect=[PersistenceError("busy"), PersistenceError("busy"), 'ok'])

        assert await retry_async(func, self.config, description="写入") == 'ok'
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_exhausted(self):
        """测试重试耗尽后抛出最后的异常"""
        func = AsyncMock(side_effect=PersistenceError("busy"))

        with pytest.raises(PersistenceError):
            await retry_async(func, self.config)
        assert func.await_count == 3

    @pytest.mark.asyncio
    async def test_non_recoverable_not_retried(self):
        """测试不可恢复的异常不重试"""
        func = AsyncMock(side_effect=PersistenceError("corrupt", recoverable=False))

        with pytest.raises(PersistenceError):
            await retry_async(func, self.config)
        assert func.await_count == 1


class TestRetryOnError:
    """同步重试装饰器测试类"""

    def test_retry_then_success(self):
        """测试同步函数重试"""
        func = Mock(side_effect=[OSError("locked"), 'done'])
        func.__name__ = 'write'
        wrapped = retry_on_error(max_attempts=2, base_delay=0.001)(func)

        with patch('uptime_monitor.utils.error_handler.time.sleep') as mock_sleep:
            assert wrapped() == 'done'
        mock_sleep.assert_called_once()

    def test_non_retryable_raised(self):
        """测试不可重试的异常直接抛出"""
        func = Mock(side_effect=ValueError("bad"))
        func.__name__ = 'parse'
        wrapped = retry_on_error(max_attempts=3)(func)

        with pytest.raises(ValueError):
            wrapped()
        assert func.call_count == 1


class TestExceptions:
    """异常类测试类"""

    def test_config_error_defaults(self):
        """测试配置异常默认不可恢复"""
        error = ConfigError("bad config", config_path='/etc/config.yaml')

        assert error.recoverable is False
        assert error.error_code == ErrorCode.CONFIG_VALIDATION_ERROR
        assert error.details == {'config_path': '/etc/config.yaml'}

    def test_notification_config_error_hierarchy(self):
        """测试通知渠道配置异常同时属于两类"""
        error = NotificationConfigError("bad channel", channel_type='webhook')

        assert isinstance(error, NotificationError)
        assert isinstance(error, ConfigError)
        assert error.error_code == ErrorCode.NOTIFICATION_CONFIG_ERROR

    def test_format_error(self):
        """测试格式化错误信息"""
        error = PersistenceError("write failed", monitor_id='api', cause=OSError("disk full"))
        text = error.format_error()

        assert text.startswith('[PERSISTENCE_WRITE_ERROR] write failed')
        assert 'monitor_id=api' in text
        assert 'disk full' in text
        assert error.to_dict()['recoverable'] is True
