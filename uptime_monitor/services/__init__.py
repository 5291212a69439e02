"""服务模块"""

from .config_manager import ConfigManager, DEFAULT_GLOBAL_CONFIG
from .config_watcher import ConfigWatcher, MonitorChanges, diff_monitors
from .schedule_coordinator import ScheduleCoordinator, ScheduleEntry
from .status_tracker import StatusTracker

__all__ = ['ConfigManager', 'DEFAULT_GLOBAL_CONFIG', 'ConfigWatcher', 'MonitorChanges',
           'diff_monitors', 'ScheduleCoordinator', 'ScheduleEntry', 'StatusTracker']
