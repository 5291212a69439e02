"""工具模块"""

from .exceptions import (UptimeMonitorError, ConfigError, ProbeError, NotificationError,
                         NotificationConfigError, PersistenceError, SchedulerError, ErrorCode)
from .log_manager import LogManager, LogLevel, get_logger, configure_logging, log_manager

__all__ = [
    'UptimeMonitorError', 'ConfigError', 'ProbeError', 'NotificationError',
    'NotificationConfigError', 'PersistenceError', 'SchedulerError', 'ErrorCode',
    'LogManager', 'LogLevel', 'get_logger', 'configure_logging', 'log_manager'
]
