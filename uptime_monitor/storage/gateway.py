"""持久化网关接口"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from ..models.monitor import Monitor, ProbeOutcome, StatusRecord


class PersistenceGateway(ABC):
    """持久化网关

    保存监控定义、派生状态、探测历史和调度元数据。
    读写失败时抛出 PersistenceError，由调用方决定是否重试。
    """

    @abstractmethod
    async def load_active_monitors(self) -> List[Monitor]:
        """加载所有启用的监控"""
        pass

    @abstractmethod
    async def get_status(self, monitor_id: str) -> Optional[StatusRecord]:
        """读取监控的派生状态，不存在时返回 None"""
        pass

    @abstractmethod
    async def save_status(self, monitor_id: str, record: StatusRecord) -> None:
        """保存监控的派生状态"""
        pass

    @abstractmethod
    async def append_history(self, outcome: ProbeOutcome) -> None:
        """
        追加一条探测历史

        同一 (monitor_id, timestamp) 重复追加时只保留一条。
        """
        pass

    @abstractmethod
    async def update_monitor_scheduling_meta(self, monitor_id: str,
                                             last_checked: Optional[datetime],
                                             next_due: Optional[datetime]) -> None:
        """更新监控的调度元数据（最后检查时间、下次检查时间）"""
        pass

    async def is_under_maintenance(self, monitor_id: str, at: datetime) -> bool:
        """监控在指定时间是否处于维护窗口"""
        return False

    async def close(self) -> None:
        """释放网关占用的资源"""
        pass
