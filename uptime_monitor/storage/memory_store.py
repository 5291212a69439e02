"""内存持久化网关"""

from collections import deque
from datetime import datetime
from typing import Dict, List, Optional, Any, Deque, Set, Tuple

from .gateway import PersistenceGateway
from ..models.monitor import Monitor, ProbeOutcome, StatusRecord
from ..utils.log_manager import get_logger


class MemoryStore(PersistenceGateway):
    """基于字典的持久化网关，进程退出后数据丢失"""

    def __init__(self, monitors: Optional[List[Monitor]] = None, history_limit: int = 1000):
        """
        初始化内存存储

        Args:
            monitors: 初始监控列表
            history_limit: 每个监控保留的历史条数
        """
        self.logger = get_logger('storage.memory')
        self.history_limit = history_limit
        self.monitors: Dict[str, Monitor] = {m.monitor_id: m for m in monitors or []}
        self.statuses: Dict[str, StatusRecord] = {}
        self.history: Dict[str, Deque[ProbeOutcome]] = {}
        self.scheduling_meta: Dict[str, Dict[str, Optional[datetime]]] = {}
        self._history_keys: Set[Tuple[str, datetime]] = set()

    def add_monitor(self, monitor: Monitor):
        """添加或替换监控定义"""
        self.monitors[monitor.monitor_id] = monitor

    def remove_monitor(self, monitor_id: str):
        """删除监控定义及其状态"""
        self.monitors.pop(monitor_id, None)
        self.statuses.pop(monitor_id, None)
        self.scheduling_meta.pop(monitor_id, None)
        for outcome in self.history.pop(monitor_id, []):
            self._history_keys.discard((monitor_id, outcome.timestamp))

    async def load_active_monitors(self) -> List[Monitor]:
        return [m for m in self.monitors.values() if m.active]

    async def get_status(self, monitor_id: str) -> Optional[StatusRecord]:
        return self.statuses.get(monitor_id)

    async def save_status(self, monitor_id: str, record: StatusRecord) -> None:
        # 保存副本，避免调用方后续修改影响已持久化的数据
        self.statuses[monitor_id] = StatusRecord(**vars(record))

        monitor = self.monitors.get(monitor_id)
        if monitor is not None:
            monitor.status = record.status
            monitor.last_checked = record.last_checked

    async def append_history(self, outcome: ProbeOutcome) -> None:
        key = (outcome.monitor_id, outcome.timestamp)
        if key in self._history_keys:
            self.logger.debug(f"忽略重复的探测历史: {outcome.monitor_id} @ {outcome.timestamp}")
            return

        history = self.history.setdefault(outcome.monitor_id, deque())
        history.append(outcome)
        self._history_keys.add(key)

        while len(history) > self.history_limit:
            dropped = history.popleft()
            self._history_keys.discard((dropped.monitor_id, dropped.timestamp))

    async def update_monitor_scheduling_meta(self, monitor_id: str,
                                             last_checked: Optional[datetime],
                                             next_due: Optional[datetime]) -> None:
        self.scheduling_meta[monitor_id] = {'last_checked': last_checked, 'next_due': next_due}

    async def is_under_maintenance(self, monitor_id: str, at: datetime) -> bool:
        monitor = self.monitors.get(monitor_id)
        return monitor.in_maintenance(at) if monitor else False

    def get_history(self, monitor_id: str, limit: Optional[int] = None) -> List[ProbeOutcome]:
        """
        获取探测历史（按时间正序）

        Args:
            monitor_id: 监控标识
            limit: 只返回最近的若干条
        """
        history = list(self.history.get(monitor_id, []))
        if limit:
            history = history[-limit:]
        return history

    def get_stats(self) -> Dict[str, Any]:
        return {
            'monitors': len(self.monitors),
            'statuses': len(self.statuses),
            'history_entries': sum(len(h) for h in self.history.values()),
        }
