"""自定义异常类

异常分为四类：
- 探测失败（ProbeFailure）不是异常，而是以 ProbeOutcome 数据的形式流转；
- 基础设施瞬时故障（PersistenceError / NotificationError），有限次重试后记录并跳过；
- 配置错误（ConfigError），在创建或编辑时拒绝，不会进入调度循环；
- 致命错误（recoverable=False），启动阶段直接中止。
"""

import traceback
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any


class ErrorCode(Enum):
    """错误代码枚举"""
    # 通用错误 (1000-1999)
    UNKNOWN_ERROR = 1000
    INITIALIZATION_ERROR = 1001

    # 配置错误 (2000-2999)
    CONFIG_FILE_NOT_FOUND = 2000
    CONFIG_PARSE_ERROR = 2001
    CONFIG_VALIDATION_ERROR = 2002
    CONFIG_RELOAD_ERROR = 2003

    # 探测错误 (3000-3999)
    PROBE_ERROR = 3000
    PROBE_NOT_SUPPORTED = 3001

    # 通知错误 (4000-4999)
    NOTIFICATION_CONFIG_ERROR = 4000
    NOTIFICATION_SEND_ERROR = 4001
    NOTIFICATION_TEMPLATE_ERROR = 4002

    # 调度错误 (5000-5999)
    SCHEDULER_ERROR = 5000
    SCHEDULER_START_ERROR = 5001
    MONITOR_NOT_FOUND = 5002

    # 持久化错误 (6000-6999)
    PERSISTENCE_READ_ERROR = 6000
    PERSISTENCE_WRITE_ERROR = 6001
    PERSISTENCE_UNAVAILABLE = 6002


class UptimeMonitorError(Exception):
    """可用性监控系统基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        recoverable: bool = True
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        self.cause = cause
        self.recoverable = recoverable
        self.timestamp = datetime.now()

    def to_dict(self) -> Dict[str, Any]:
        """将异常转换为字典格式"""
        return {
            'error_code': self.error_code.value,
            'error_name': self.error_code.name,
            'message': self.message,
            'details': self.details,
            'recoverable': self.recoverable,
            'timestamp': self.timestamp.isoformat(),
            'cause': str(self.cause) if self.cause else None,
            'traceback': traceback.format_exc() if self.cause else None
        }

    def format_error(self) -> str:
        """格式化错误信息"""
        error_msg = f"[{self.error_code.name}] {self.message}"
        if self.details:
            details_str = ", ".join([f"{k}={v}" for k, v in self.details.items()])
            error_msg += f" (详情: {details_str})"
        if self.cause:
            error_msg += f" (原因: {str(self.cause)})"
        return error_msg


class ConfigError(UptimeMonitorError):
    """配置相关异常（畸形目标、缺失凭据等）"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.CONFIG_VALIDATION_ERROR,
        config_path: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if config_path:
            details['config_path'] = config_path
        kwargs.setdefault('recoverable', False)
        super().__init__(message, error_code, details, **kwargs)


class ProbeError(UptimeMonitorError):
    """探测器相关异常，只在探测器注册和创建阶段抛出"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.PROBE_ERROR,
        probe_kind: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if probe_kind:
            details['probe_kind'] = probe_kind
        super().__init__(message, error_code, details, **kwargs)


class NotificationError(UptimeMonitorError):
    """通知发送异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.NOTIFICATION_SEND_ERROR,
        channel_type: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if channel_type:
            details['channel_type'] = channel_type
        super().__init__(message, error_code, details, **kwargs)


class NotificationConfigError(NotificationError, ConfigError):
    """通知渠道配置异常"""

    def __init__(self, message: str, channel_type: Optional[str] = None, **kwargs):
        UptimeMonitorError.__init__(
            self,
            message,
            ErrorCode.NOTIFICATION_CONFIG_ERROR,
            {'channel_type': channel_type} if channel_type else {},
            recoverable=False,
            **kwargs
        )


class PersistenceError(UptimeMonitorError):
    """持久化网关读写异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.PERSISTENCE_WRITE_ERROR,
        monitor_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if monitor_id:
            details['monitor_id'] = monitor_id
        super().__init__(message, error_code, details, **kwargs)


class SchedulerError(UptimeMonitorError):
    """调度器相关异常"""

    def __init__(
        self,
        message: str,
        error_code: ErrorCode = ErrorCode.SCHEDULER_ERROR,
        monitor_id: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop('details', {})
        if monitor_id:
            details['monitor_id'] = monitor_id
        super().__init__(message, error_code, details, **kwargs)
