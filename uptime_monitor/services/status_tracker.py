"""状态跟踪器

把探测结果折叠为监控的派生状态（up/down/pending），带滞回：
连续失败达到阈值才判定为 down，连续成功达到阈值才判定为 up。
状态真正变化时返回 TransitionEvent。
"""

import asyncio
from dataclasses import replace
from typing import Awaitable, Callable, Dict, Optional, Union

from ..models.monitor import MonitorStatus, ProbeOutcome, StatusRecord, TransitionEvent
from ..storage.gateway import PersistenceGateway
from ..utils.exceptions import PersistenceError, ErrorCode
from ..utils.log_manager import get_logger

CommitGuard = Callable[[], Union[bool, Awaitable[bool]]]


class StatusTracker:
    """状态跟踪器

    同一监控的结果串行处理；写入顺序固定为先追加历史、再保存状态，
    中途失败时历史可能领先于状态，但状态不会领先于历史。
    """

    def __init__(self, gateway: PersistenceGateway, failure_threshold: int = 1,
                 recovery_threshold: int = 1):
        """
        初始化状态跟踪器

        Args:
            gateway: 持久化网关
            failure_threshold: 判定为 down 所需的连续失败次数
            recovery_threshold: 判定为 up 所需的连续成功次数
        """
        if failure_threshold < 1 or recovery_threshold < 1:
            raise ValueError("状态切换阈值必须不小于1")

        self.gateway = gateway
        self.failure_threshold = failure_threshold
        self.recovery_threshold = recovery_threshold
        self.logger = get_logger('services.status_tracker')
        self._records: Dict[str, StatusRecord] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, monitor_id: str) -> asyncio.Lock:
        if monitor_id not in self._locks:
            self._locks[monitor_id] = asyncio.Lock()
        return self._locks[monitor_id]

    async def _load(self, monitor_id: str) -> StatusRecord:
        record = self._records.get(monitor_id)
        if record is not None:
            return record

        try:
            record = await self.gateway.get_status(monitor_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"读取监控 {monitor_id} 的状态失败: {e}",
                                   error_code=ErrorCode.PERSISTENCE_READ_ERROR,
                                   monitor_id=monitor_id, cause=e)

        record = record or StatusRecord()
        self._records[monitor_id] = record
        return record

    def _fold(self, record: StatusRecord, outcome: ProbeOutcome) -> StatusRecord:
        """计算新的状态记录，不修改传入的记录"""
        updated = replace(record,
                          last_processed=outcome.timestamp,
                          last_checked=outcome.timestamp,
                          last_reason=outcome.reason,
                          last_message=outcome.message)

        if outcome.success:
            updated.consecutive_successes += 1
            updated.consecutive_failures = 0
        else:
            updated.consecutive_failures += 1
            updated.consecutive_successes = 0

        if record.status == MonitorStatus.PENDING:
            # 第一个结果直接决定状态
            new_status = MonitorStatus.UP if outcome.success else MonitorStatus.DOWN
        elif outcome.success and updated.consecutive_successes >= self.recovery_threshold:
            new_status = MonitorStatus.UP
        elif not outcome.success and updated.consecutive_failures >= self.failure_threshold:
            new_status = MonitorStatus.DOWN
        else:
            new_status = record.status

        if new_status != record.status:
            updated.status = new_status
            updated.last_transition = outcome.timestamp
            updated.consecutive_failures = 0
            updated.consecutive_successes = 0

        return updated

    async def _allowed(self, monitor_id: str, should_commit: Optional[CommitGuard]) -> bool:
        if should_commit is None:
            return True
        allowed = should_commit()
        if asyncio.iscoroutine(allowed):
            allowed = await allowed
        if not allowed:
            self._records.pop(monitor_id, None)
            self.logger.info(f"监控 {monitor_id} 已被删除，丢弃探测结果")
        return bool(allowed)

    async def record(self, outcome: ProbeOutcome,
                     should_commit: Optional[CommitGuard] = None) -> Optional[TransitionEvent]:
        """
        处理一次探测结果

        Args:
            outcome: 探测结果
            should_commit: 写入前再次检查的回调，返回 False 时丢弃结果（监控已被删除）

        Returns:
            Optional[TransitionEvent]: 状态发生变化时返回事件，否则返回 None

        Raises:
            PersistenceError: 读写持久化网关失败，调用方可以重试
        """
        monitor_id = outcome.monitor_id

        async with self._lock_for(monitor_id):
            record = await self._load(monitor_id)

            if record.last_processed is not None and outcome.timestamp <= record.last_processed:
                self.logger.debug(
                    f"监控 {monitor_id} 的结果 {outcome.timestamp.isoformat()} 已处理过，忽略")
                return None

            updated = self._fold(record, outcome)

            if not await self._allowed(monitor_id, should_commit):
                return None

            try:
                await self.gateway.append_history(outcome)
                await self.gateway.save_status(monitor_id, updated)
            except PersistenceError:
                raise
            except Exception as e:
                raise PersistenceError(f"写入监控 {monitor_id} 的状态失败: {e}",
                                       monitor_id=monitor_id, cause=e)

            # 写入期间监控可能已被删除
            if not await self._allowed(monitor_id, should_commit):
                return None

            self._records[monitor_id] = updated

        if updated.status == record.status:
            return None

        if record.status == MonitorStatus.PENDING:
            self.logger.info(f"监控 {monitor_id} 初始状态: {updated.status.value}")
        else:
            self.logger.warning(
                f"监控 {monitor_id} 状态变化: {record.status.value} -> {updated.status.value}")

        return TransitionEvent(
            monitor_id=monitor_id,
            previous_status=record.status,
            new_status=updated.status,
            timestamp=outcome.timestamp,
            outcome=outcome
        )

    def get_snapshot(self, monitor_id: str) -> Optional[StatusRecord]:
        """获取最近一次成功写入的状态记录"""
        record = self._records.get(monitor_id)
        return replace(record) if record else None

    def forget(self, monitor_id: str):
        """监控删除后清理缓存"""
        self._records.pop(monitor_id, None)
        lock = self._locks.get(monitor_id)
        # 仍在写入时保留锁，由写入方在二次检查后丢弃结果
        if lock is not None and not lock.locked():
            del self._locks[monitor_id]
