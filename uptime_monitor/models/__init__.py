"""数据模型模块"""

from .channel import (AuthMode, ChannelType, EmailChannelConfig, NotificationChannelConfig,
                      WebhookChannelConfig, channel_config_from_dict)
from .monitor import (FailureReason, MaintenanceWindow, Monitor, MonitorStatus, ProbeKind,
                      ProbeOutcome, ScheduleState, StatusRecord, TransitionEvent,
                      is_success_status, parse_status_ranges)

__all__ = [
    'AuthMode', 'ChannelType', 'EmailChannelConfig', 'NotificationChannelConfig',
    'WebhookChannelConfig', 'channel_config_from_dict',
    'FailureReason', 'MaintenanceWindow', 'Monitor', 'MonitorStatus', 'ProbeKind',
    'ProbeOutcome', 'ScheduleState', 'StatusRecord', 'TransitionEvent',
    'is_success_status', 'parse_status_ranges'
]
