"""监控相关的数据模型"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Any, Optional, List, Tuple
from urllib.parse import urlparse

from .channel import NotificationChannelConfig, channel_config_from_dict
from ..utils.exceptions import ConfigError, UptimeMonitorError

DEFAULT_SUCCESS_CODES: Tuple[Tuple[int, int], ...] = ((200, 399),)


class ProbeKind(Enum):
    """探测类型"""
    HTTP = "http"
    PING = "ping"


class MonitorStatus(Enum):
    """监控状态，pending 只存在于第一次探测结果之前"""
    UP = "up"
    DOWN = "down"
    PENDING = "pending"


class ScheduleState(Enum):
    """调度状态"""
    SCHEDULED = "scheduled"
    RUNNING = "running"
    PAUSED = "paused"
    REMOVED = "removed"


class FailureReason:
    """探测失败原因分类"""
    TIMEOUT = 'timeout'
    CONNECTION_REFUSED = 'connection-refused'
    DNS_FAILURE = 'dns-failure'
    UNRESOLVABLE = 'unresolvable'
    UNKNOWN = 'unknown'
    HTTP_ERROR_PREFIX = 'http-error:'

    @classmethod
    def http_error(cls, status_code: int) -> str:
        return f"{cls.HTTP_ERROR_PREFIX}{status_code}"

    @classmethod
    def status_code_of(cls, reason: Optional[str]) -> Optional[int]:
        """从 http-error:<code> 中取出状态码"""
        if not reason or not reason.startswith(cls.HTTP_ERROR_PREFIX):
            return None
        try:
            return int(reason[len(cls.HTTP_ERROR_PREFIX):])
        except ValueError:
            return None


def parse_status_ranges(value: Any) -> Tuple[Tuple[int, int], ...]:
    """
    解析 HTTP 成功状态码范围

    支持 ``"200-399"``、``"200-299,301"``、``[200, 204]``、``[[200, 299]]`` 等写法。

    Raises:
        ConfigError: 范围格式无效
    """
    if value is None:
        return DEFAULT_SUCCESS_CODES

    if isinstance(value, str):
        items: List[Any] = [part.strip() for part in value.split(',') if part.strip()]
    elif isinstance(value, int):
        items = [value]
    else:
        items = list(value)

    ranges = []
    for item in items:
        try:
            if isinstance(item, str) and '-' in item:
                low, high = (int(part) for part in item.split('-', 1))
            elif isinstance(item, (list, tuple)):
                low, high = int(item[0]), int(item[1])
            else:
                low = high = int(item)
        except (TypeError, ValueError, IndexError):
            raise ConfigError(f"HTTP成功状态码范围格式无效: {value!r}")

        if not 100 <= low <= high <= 599:
            raise ConfigError(f"HTTP成功状态码范围无效: {low}-{high}")
        ranges.append((low, high))

    if not ranges:
        raise ConfigError("HTTP成功状态码范围不能为空")
    return tuple(ranges)


def is_success_status(status_code: int,
                      ranges: Tuple[Tuple[int, int], ...] = DEFAULT_SUCCESS_CODES) -> bool:
    """判断状态码是否落在成功范围内"""
    return any(low <= status_code <= high for low, high in ranges)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_datetime(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class MaintenanceWindow:
    """维护窗口，窗口内的检查被跳过"""
    start: datetime
    end: datetime

    def contains(self, at: datetime) -> bool:
        return self.start <= at < self.end


@dataclass
class Monitor:
    """被监控的目标"""
    monitor_id: str
    target: str
    kind: ProbeKind = ProbeKind.HTTP
    interval: float = 60.0
    timeout: float = 10.0
    name: str = ''
    active: bool = True
    channels: List[NotificationChannelConfig] = field(default_factory=list)
    status: MonitorStatus = MonitorStatus.PENDING
    last_checked: Optional[datetime] = None
    success_codes: Tuple[Tuple[int, int], ...] = DEFAULT_SUCCESS_CODES
    maintenance_windows: List[MaintenanceWindow] = field(default_factory=list)

    def __post_init__(self):
        if not self.name:
            self.name = self.monitor_id
        if not isinstance(self.kind, ProbeKind):
            try:
                self.kind = ProbeKind(str(self.kind).lower())
            except ValueError:
                raise ConfigError(
                    f"监控 {self.monitor_id} 的探测类型 '{self.kind}' 不受支持，"
                    f"支持的类型: {[k.value for k in ProbeKind]}")

    def validate(self, min_interval: float = 1.0) -> None:
        """
        验证监控定义

        Args:
            min_interval: 允许的最小检查间隔（秒）

        Raises:
            ConfigError: 目标、间隔或通知渠道配置无效
        """
        if not self.monitor_id:
            raise ConfigError("监控标识不能为空")

        if self.kind == ProbeKind.HTTP:
            try:
                parsed = urlparse(self.target or '')
            except ValueError as e:
                raise ConfigError(f"监控 {self.monitor_id} 的HTTP目标解析失败: {e}")
            if parsed.scheme not in ('http', 'https') or not parsed.netloc:
                raise ConfigError(f"监控 {self.monitor_id} 的HTTP目标格式无效: {self.target!r}")
        else:
            target = (self.target or '').strip()
            if not target or '://' in target or '/' in target or ' ' in target:
                raise ConfigError(f"监控 {self.monitor_id} 的Ping目标格式无效: {self.target!r}")

        if not isinstance(self.interval, (int, float)) or self.interval < min_interval:
            raise ConfigError(
                f"监控 {self.monitor_id} 的检查间隔必须不小于 {min_interval} 秒: {self.interval!r}")

        if not isinstance(self.timeout, (int, float)) or self.timeout <= 0:
            raise ConfigError(f"监控 {self.monitor_id} 的超时时间必须是正数: {self.timeout!r}")

        for channel in self.channels:
            try:
                channel.validate()
            except UptimeMonitorError as e:
                raise ConfigError(
                    f"监控 {self.monitor_id} 的通知渠道 {channel.describe()} 配置无效: {e.message}")

    def effective_timeout(self) -> float:
        """探测超时严格小于检查间隔，避免同一监控自我重叠"""
        return min(float(self.timeout), float(self.interval) * 0.9)

    def in_maintenance(self, at: Optional[datetime] = None) -> bool:
        at = at or datetime.now()
        return any(window.contains(at) for window in self.maintenance_windows)

    @classmethod
    def from_dict(cls, monitor_id: str, data: Dict[str, Any],
                  defaults: Optional[Dict[str, Any]] = None) -> 'Monitor':
        """
        从配置字典创建监控

        Args:
            monitor_id: 监控标识
            data: 监控配置，``url`` 与 ``target`` 二选一
            defaults: 全局默认值（default_interval / default_timeout）

        Raises:
            ConfigError: 配置无法解析
        """
        if not isinstance(data, dict):
            raise ConfigError(f"监控 '{monitor_id}' 的配置必须是字典类型")

        defaults = defaults or {}
        for key in ('notifications', 'maintenance'):
            if not isinstance(data.get(key) or [], list):
                raise ConfigError(f"监控 '{monitor_id}' 的 {key} 配置必须是列表类型")

        try:
            channels = [channel_config_from_dict(item) for item in data.get('notifications') or []]
        except UptimeMonitorError as e:
            raise ConfigError(f"监控 '{monitor_id}' 的通知渠道配置无效: {e.message}")

        try:
            windows = [
                MaintenanceWindow(start=_parse_datetime(item['start']),
                                  end=_parse_datetime(item['end']))
                for item in data.get('maintenance') or []
            ]
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"监控 '{monitor_id}' 的维护窗口配置无效: {e}")

        return cls(
            monitor_id=str(monitor_id),
            target=str(data.get('target') or data.get('url') or ''),
            kind=data.get('type', ProbeKind.HTTP.value),
            interval=data.get('interval', defaults.get('default_interval', 60)),
            timeout=data.get('timeout', defaults.get('default_timeout', 10)),
            name=str(data.get('name', '') or ''),
            active=bool(data.get('active', True)),
            channels=channels,
            success_codes=parse_status_ranges(data.get('success_codes')),
            maintenance_windows=windows,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'target': self.target,
            'type': self.kind.value,
            'interval': self.interval,
            'timeout': self.timeout,
            'active': self.active,
            'notifications': [channel.to_dict() for channel in self.channels],
            'success_codes': [list(r) for r in self.success_codes],
            'maintenance': [{'start': _iso(w.start), 'end': _iso(w.end)}
                            for w in self.maintenance_windows],
        }


@dataclass(frozen=True)
class ProbeOutcome:
    """一次探测的结果，创建后不可修改"""
    monitor_id: str
    success: bool
    latency: float
    timestamp: datetime = field(default_factory=datetime.now)
    reason: Optional[str] = None
    message: str = ''
    target: str = ''
    kind: Optional[ProbeKind] = None
    status_code: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'monitor_id': self.monitor_id,
            'success': self.success,
            'latency': self.latency,
            'timestamp': self.timestamp.isoformat(),
            'reason': self.reason,
            'message': self.message,
            'target': self.target,
            'kind': self.kind.value if self.kind else None,
            'status_code': self.status_code,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ProbeOutcome':
        return cls(
            monitor_id=data['monitor_id'],
            success=bool(data['success']),
            latency=float(data.get('latency', 0.0)),
            timestamp=_parse_datetime(data['timestamp']),
            reason=data.get('reason'),
            message=data.get('message', ''),
            target=data.get('target', ''),
            kind=ProbeKind(data['kind']) if data.get('kind') else None,
            status_code=data.get('status_code'),
        )


@dataclass
class StatusRecord:
    """监控的派生状态，只由状态跟踪器写入"""
    status: MonitorStatus = MonitorStatus.PENDING
    consecutive_failures: int = 0
    consecutive_successes: int = 0
    last_transition: Optional[datetime] = None
    last_processed: Optional[datetime] = None
    last_checked: Optional[datetime] = None
    last_reason: Optional[str] = None
    last_message: str = ''

    def to_dict(self) -> Dict[str, Any]:
        return {
            'status': self.status.value,
            'consecutive_failures': self.consecutive_failures,
            'consecutive_successes': self.consecutive_successes,
            'last_transition': _iso(self.last_transition),
            'last_processed': _iso(self.last_processed),
            'last_checked': _iso(self.last_checked),
            'last_reason': self.last_reason,
            'last_message': self.last_message,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'StatusRecord':
        return cls(
            status=MonitorStatus(data.get('status', MonitorStatus.PENDING.value)),
            consecutive_failures=int(data.get('consecutive_failures', 0)),
            consecutive_successes=int(data.get('consecutive_successes', 0)),
            last_transition=_parse_datetime(data.get('last_transition')),
            last_processed=_parse_datetime(data.get('last_processed')),
            last_checked=_parse_datetime(data.get('last_checked')),
            last_reason=data.get('last_reason'),
            last_message=data.get('last_message', ''),
        )


@dataclass(frozen=True)
class TransitionEvent:
    """状态变化事件，只用于通知，不直接持久化"""
    monitor_id: str
    previous_status: MonitorStatus
    new_status: MonitorStatus
    timestamp: datetime
    outcome: ProbeOutcome
