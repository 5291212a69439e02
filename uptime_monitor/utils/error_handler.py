"""重试机制

持久化写入等基础设施瞬时故障按有限次数退避重试，
超过次数后交由调用方记录并跳过本轮。
"""

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from functools import wraps
from typing import Callable, Any, Optional, List, TypeVar, Awaitable

from .exceptions import UptimeMonitorError

T = TypeVar('T')
logger = logging.getLogger(__name__)


class RetryStrategy(Enum):
    """重试策略"""
    FIXED_DELAY = "fixed_delay"
    EXPONENTIAL_BACKOFF = "exponential_backoff"
    LINEAR_BACKOFF = "linear_backoff"


@dataclass
class RetryConfig:
    """重试配置"""
    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 10.0
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF
    backoff_multiplier: float = 2.0
    jitter: bool = True
    retryable_errors: Optional[List[type]] = None


class RetryHandler:
    """重试处理器"""

    def __init__(self, config: RetryConfig):
        self.config = config

    def calculate_delay(self, attempt: int) -> float:
        """计算第 attempt 次失败后的等待时间"""
        if self.config.strategy == RetryStrategy.FIXED_DELAY:
            delay = self.config.base_delay
        elif self.config.strategy == RetryStrategy.EXPONENTIAL_BACKOFF:
            delay = self.config.base_delay * (
                self.config.backoff_multiplier ** (attempt - 1))
        elif self.config.strategy == RetryStrategy.LINEAR_BACKOFF:
            delay = self.config.base_delay * attempt
        else:
            delay = self.config.base_delay

        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            delay = delay * (0.5 + random.random() * 0.5)

        return delay

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """判断是否应该重试"""
        if attempt >= self.config.max_attempts:
            return False

        if self.config.retryable_errors:
            return any(isinstance(error, error_type) for error_type in
                       self.config.retryable_errors)

        # 系统异常按 recoverable 标志判断
        if isinstance(error, UptimeMonitorError):
            return error.recoverable

        return isinstance(error, (ConnectionError, TimeoutError, OSError))


async def retry_async(
        func: Callable[[], Awaitable[T]],
        config: RetryConfig,
        description: str = ''
) -> T:
    """按重试配置执行异步调用

    Args:
        func: 无参异步函数，每次尝试都会重新调用
        config: 重试配置
        description: 日志中使用的操作描述

    Returns:
        func 的返回值

    Raises:
        最后一次尝试的异常
    """
    retry_handler = RetryHandler(config)
    name = description or getattr(func, '__name__', 'operation')
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func()
        except Exception as error:
            if not retry_handler.should_retry(error, attempt):
                if attempt >= config.max_attempts:
                    logger.error(f"{name} 重试失败，已达到最大重试次数 {config.max_attempts}")
                raise

            delay = retry_handler.calculate_delay(attempt)
            logger.warning(
                f"{name} 执行失败 (尝试 {attempt}/{config.max_attempts}): "
                f"{error}，{delay:.2f}秒后重试"
            )
            await asyncio.sleep(delay)


def retry_on_error(
        max_attempts: int = 3,
        base_delay: float = 0.1,
        strategy: RetryStrategy = RetryStrategy.EXPONENTIAL_BACKOFF,
        retryable_errors: Optional[List[type]] = None
):
    """同步函数重试装饰器"""
    config = RetryConfig(
        max_attempts=max_attempts,
        base_delay=base_delay,
        strategy=strategy,
        retryable_errors=retryable_errors
    )
    retry_handler = RetryHandler(config)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as error:
                    if not retry_handler.should_retry(error, attempt):
                        logger.warning(
                            f"函数 {func.__name__} 错误不可重试或达到最大重试次数: {error}")
                        raise

                    delay = retry_handler.calculate_delay(attempt)
                    logger.warning(
                        f"函数 {func.__name__} 执行失败 (尝试 {attempt}/{config.max_attempts}): "
                        f"{error}，{delay:.2f}秒后重试"
                    )
                    time.sleep(delay)

        return wrapper

    return decorator
