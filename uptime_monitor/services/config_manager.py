"""配置管理器"""

import os
from typing import Dict, Any, Optional, List

import yaml

from ..models.monitor import Monitor
from ..utils.config_validator import ConfigValidator
from ..utils.error_handler import RetryConfig
from ..utils.exceptions import ConfigError, ErrorCode
from ..utils.log_manager import get_logger

DEFAULT_GLOBAL_CONFIG: Dict[str, Any] = {
    'log_level': 'INFO',
    'log_file': None,
    'max_workers': 10,
    'min_interval': 1.0,
    'default_interval': 60,
    'default_timeout': 10,
    'failure_threshold': 1,
    'recovery_threshold': 1,
    'notification_timeout': 10,
    'state_file': None,
    'persistence_retry_attempts': 3,
    'persistence_retry_delay': 0.5,
}


class ConfigManager:
    """配置管理器，负责YAML配置文件的加载、解析和验证"""

    def __init__(self, config_path: str):
        """
        初始化配置管理器

        Args:
            config_path: 配置文件路径
        """
        self.config_path = config_path
        self.config: Dict[str, Any] = {}
        self.last_modified: Optional[float] = None
        self.logger = get_logger('config_manager')

    def load_config(self) -> Dict[str, Any]:
        """
        加载YAML配置文件

        Returns:
            Dict[str, Any]: 配置字典

        Raises:
            ConfigError: 配置加载或验证失败
        """
        self.logger.info(f"开始加载配置文件: {self.config_path}")

        try:
            with open(self.config_path, 'r', encoding='utf-8') as file:
                config = yaml.safe_load(file)
        except FileNotFoundError:
            self.logger.error(f"配置文件不存在: {self.config_path}")
            raise ConfigError(f"配置文件不存在: {self.config_path}",
                              error_code=ErrorCode.CONFIG_FILE_NOT_FOUND,
                              config_path=self.config_path)
        except PermissionError:
            self.logger.error(f"没有权限读取配置文件: {self.config_path}")
            raise ConfigError(f"没有权限读取配置文件: {self.config_path}",
                              config_path=self.config_path)
        except yaml.YAMLError as e:
            self.logger.error(f"YAML格式错误: {e}")
            raise ConfigError(f"YAML格式错误: {e}", error_code=ErrorCode.CONFIG_PARSE_ERROR,
                              config_path=self.config_path)

        if config is None:
            self.logger.error("配置文件为空")
            raise ConfigError("配置文件为空", config_path=self.config_path)

        self.validate(config)
        self.logger.info(f"配置验证成功，包含 {len(config.get('monitors') or {})} 个监控")

        old_config = self.config
        self.config = config
        self.last_modified = os.path.getmtime(self.config_path)

        if old_config:
            self._log_config_changes(old_config, config)
        else:
            self.logger.info("首次加载配置文件")

        return self.config

    def validate(self, config: Dict[str, Any]) -> None:
        """
        验证配置文件内容

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(config, dict):
            raise ConfigError("配置文件根节点必须是字典类型")

        global_config = config.get('global') or {}
        ConfigValidator.validate_global_config(global_config)
        defaults = {**DEFAULT_GLOBAL_CONFIG, **global_config}

        if config.get('smtp') is not None:
            ConfigValidator.validate_smtp_config(config['smtp'])

        monitors = config.get('monitors') or {}
        if not isinstance(monitors, dict):
            raise ConfigError("monitors配置必须是字典类型")

        for monitor_id, monitor_config in monitors.items():
            ConfigValidator.validate_monitor_config(
                str(monitor_id), monitor_config, defaults, defaults['min_interval'])

    def get_global_config(self) -> Dict[str, Any]:
        """获取全局配置（已合并默认值）"""
        return {**DEFAULT_GLOBAL_CONFIG, **(self.config.get('global') or {})}

    def get_smtp_config(self) -> Dict[str, Any]:
        return self.config.get('smtp') or {}

    def get_monitors_config(self) -> Dict[str, Any]:
        return self.config.get('monitors') or {}

    def get_monitors(self, config: Optional[Dict[str, Any]] = None) -> List[Monitor]:
        """
        把监控配置转换为监控定义

        Args:
            config: 配置字典，默认使用当前配置
        """
        config = config if config is not None else self.config
        defaults = {**DEFAULT_GLOBAL_CONFIG, **(config.get('global') or {})}
        return [Monitor.from_dict(str(monitor_id), data, defaults)
                for monitor_id, data in (config.get('monitors') or {}).items()]

    def get_persistence_retry(self) -> RetryConfig:
        global_config = self.get_global_config()
        return RetryConfig(max_attempts=global_config['persistence_retry_attempts'],
                           base_delay=global_config['persistence_retry_delay'])

    def is_config_changed(self) -> bool:
        """
        检查配置文件是否已修改

        Returns:
            bool: 配置文件是否已修改
        """
        try:
            current_modified = os.path.getmtime(self.config_path)
        except OSError:
            return False
        return self.last_modified is None or current_modified > self.last_modified

    def reload_config(self) -> Dict[str, Any]:
        """
        重新加载配置文件，失败时保留原配置

        Raises:
            ConfigError: 配置重新加载失败
        """
        self.logger.info("重新加载配置文件")
        try:
            return self.load_config()
        except ConfigError as e:
            # 避免轮询时反复重新加载同一个错误文件
            try:
                self.last_modified = os.path.getmtime(self.config_path)
            except OSError:
                pass
            raise ConfigError(f"配置重新加载失败，继续使用原配置: {e.message}",
                              error_code=ErrorCode.CONFIG_RELOAD_ERROR,
                              config_path=self.config_path, cause=e)

    def _log_config_changes(self, old_config: Dict[str, Any], new_config: Dict[str, Any]) -> None:
        old_monitors = old_config.get('monitors') or {}
        new_monitors = new_config.get('monitors') or {}

        added = set(new_monitors) - set(old_monitors)
        if added:
            self.logger.info(f"新增监控: {', '.join(sorted(map(str, added)))}")

        removed = set(old_monitors) - set(new_monitors)
        if removed:
            self.logger.info(f"删除监控: {', '.join(sorted(map(str, removed)))}")

        for monitor_id in set(old_monitors) & set(new_monitors):
            if old_monitors[monitor_id] != new_monitors[monitor_id]:
                self.logger.info(f"监控配置已修改: {monitor_id}")

        if (old_config.get('global') or {}) != (new_config.get('global') or {}):
            self.logger.info("全局配置已修改，部分配置需要重启后生效")
