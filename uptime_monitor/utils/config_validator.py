"""配置验证工具"""

from typing import Dict, Any

from .exceptions import ConfigError, UptimeMonitorError

VALID_LOG_LEVELS = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']

# 全局配置中的数值项: (名称, 是否必须为整数, 允许的最小值)
GLOBAL_NUMBERS = [
    ('max_workers', True, 1),
    ('min_interval', False, 0.001),
    ('default_interval', False, 0.001),
    ('default_timeout', False, 0.001),
    ('failure_threshold', True, 1),
    ('recovery_threshold', True, 1),
    ('notification_timeout', False, 0.001),
    ('persistence_retry_attempts', True, 1),
    ('persistence_retry_delay', False, 0),
]


class ConfigValidator:
    """配置验证器"""

    @staticmethod
    def validate_global_config(global_config: Dict[str, Any]) -> None:
        """
        验证全局配置

        Args:
            global_config: 全局配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(global_config, dict):
            raise ConfigError("全局配置必须是字典类型")

        for key, integer_only, minimum in GLOBAL_NUMBERS:
            value = global_config.get(key)
            if value is None:
                continue
            expected = int if integer_only else (int, float)
            if isinstance(value, bool) or not isinstance(value, expected) or value < minimum:
                kind = '整数' if integer_only else '数值'
                raise ConfigError(f"{key} 必须是不小于 {minimum} 的{kind}: {value!r}")

        log_level = global_config.get('log_level')
        if log_level is not None and str(log_level).upper() not in VALID_LOG_LEVELS:
            raise ConfigError(f"log_level 必须是以下值之一: {VALID_LOG_LEVELS}")

    @staticmethod
    def validate_smtp_config(smtp_config: Dict[str, Any]) -> None:
        """
        验证 SMTP 配置

        Raises:
            ConfigError: 配置验证失败
        """
        if not isinstance(smtp_config, dict):
            raise ConfigError("smtp配置必须是字典类型")

        if not smtp_config.get('hostname'):
            raise ConfigError("smtp配置缺少必需的配置项: hostname")

        port = smtp_config.get('port', 587)
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            raise ConfigError(f"SMTP端口无效: {port!r}")

        if smtp_config.get('use_tls') and smtp_config.get('start_tls'):
            raise ConfigError("use_tls 与 start_tls 不能同时启用")

    @staticmethod
    def validate_monitor_config(monitor_id: str, config: Dict[str, Any],
                                defaults: Dict[str, Any], min_interval: float = 1.0) -> None:
        """
        验证监控配置

        Args:
            monitor_id: 监控标识
            config: 监控配置
            defaults: 全局默认值
            min_interval: 允许的最小检查间隔

        Raises:
            ConfigError: 配置验证失败
        """
        # 避免循环导入
        from ..models.monitor import Monitor

        if not isinstance(config, dict):
            raise ConfigError(f"监控 '{monitor_id}' 的配置必须是字典类型")

        if not (config.get('url') or config.get('target')):
            raise ConfigError(f"监控 '{monitor_id}' 缺少必需的配置项: url 或 target")

        try:
            Monitor.from_dict(monitor_id, config, defaults).validate(min_interval)
        except ConfigError:
            raise
        except UptimeMonitorError as e:
            raise ConfigError(f"监控 '{monitor_id}' 配置无效: {e.message}")
