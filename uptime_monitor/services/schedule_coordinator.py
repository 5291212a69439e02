"""调度协调器模块

按每个监控自己的间隔触发探测，使用固定数量的 worker 协程并发执行。
每个监控在同一时刻最多只有一次运行，下一次触发时间在本次运行结束后才计算。
"""

import asyncio
import heapq
import itertools
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, Any, Optional, List, Set, Tuple, Union

import psutil

from .status_tracker import StatusTracker
from ..models.channel import NotificationChannelConfig, channel_config_from_dict
from ..models.monitor import FailureReason, Monitor, ProbeOutcome, ScheduleState, \
    TransitionEvent
from ..notifications.dispatcher import DeliveryResult, NotificationDispatcher
from ..probes.executor import ProbeExecutor
from ..storage.gateway import PersistenceGateway
from ..utils.error_handler import RetryConfig, retry_async
from ..utils.exceptions import (ConfigError, ErrorCode, PersistenceError, SchedulerError,
                                UptimeMonitorError)
from ..utils.log_manager import get_logger
from ..utils.metrics import SchedulerMetrics, collect_process_metrics


@dataclass
class ScheduleEntry:
    """单个监控的调度状态"""
    monitor: Monitor
    state: ScheduleState = ScheduleState.SCHEDULED
    generation: int = 0
    due_at: Optional[float] = None
    in_flight: bool = False
    last_started: Optional[datetime] = None
    last_completed: Optional[datetime] = None
    last_completed_at: Optional[float] = None
    run_count: int = 0


class ScheduleCoordinator:
    """调度协调器

    状态机: scheduled -> running -> scheduled，scheduled|running -> paused，
    paused -> scheduled（立即到期），任意状态 -> removed（终态，条目删除）。
    """

    def __init__(self, gateway: PersistenceGateway, executor: ProbeExecutor,
                 tracker: StatusTracker, dispatcher: NotificationDispatcher,
                 max_workers: int = 10, min_interval: float = 1.0,
                 persistence_retry: Optional[RetryConfig] = None,
                 metrics: Optional[SchedulerMetrics] = None):
        """
        初始化调度协调器

        Args:
            gateway: 持久化网关
            executor: 探测执行器
            tracker: 状态跟踪器
            dispatcher: 通知分发器
            max_workers: worker 数量（全局并发上限）
            min_interval: 允许的最小检查间隔（秒）
            persistence_retry: 状态写入失败时的重试配置
            metrics: 调度指标
        """
        if max_workers < 1:
            raise ConfigError(f"worker 数量必须不小于1: {max_workers}")

        self.gateway = gateway
        self.executor = executor
        self.tracker = tracker
        self.dispatcher = dispatcher
        self.max_workers = max_workers
        self.min_interval = min_interval
        self.persistence_retry = persistence_retry or RetryConfig(max_attempts=3, base_delay=0.5)
        self.metrics = metrics or SchedulerMetrics()
        self.logger = get_logger('services.schedule_coordinator')

        self._entries: Dict[str, ScheduleEntry] = {}
        self._removed: Set[str] = set()
        self._heap: List[Tuple[float, int, str, int]] = []
        self._sequence = itertools.count()
        self._wakeup = asyncio.Event()
        self._workers: List[asyncio.Task] = []
        self._notification_tasks: Set[asyncio.Task] = set()
        self._thread_pool: Optional[ThreadPoolExecutor] = None
        self.is_running = False
        self._stopping = False
        self._stopped = False

    # ------------------------------------------------------------------
    # 就绪队列

    def _push(self, entry: ScheduleEntry, due_at: float):
        entry.generation += 1
        entry.due_at = due_at
        heapq.heappush(self._heap,
                       (due_at, next(self._sequence), entry.monitor.monitor_id, entry.generation))
        self._wakeup.set()

    def _is_current(self, item: Tuple[float, int, str, int]) -> bool:
        entry = self._entries.get(item[2])
        return entry is not None and entry.generation == item[3] \
            and entry.state == ScheduleState.SCHEDULED

    async def _next_due(self) -> Optional[Tuple[ScheduleEntry, float]]:
        """等待下一个到期的监控，调度器停止时返回 None"""
        while not self._stopping:
            while self._heap and not self._is_current(self._heap[0]):
                heapq.heappop(self._heap)

            if not self._heap:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue

            due_at, _, monitor_id, _ = self._heap[0]
            delay = due_at - time.monotonic()
            if delay > 0:
                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), delay)
                except asyncio.TimeoutError:
                    pass
                continue

            heapq.heappop(self._heap)
            entry = self._entries[monitor_id]
            if entry.in_flight:
                self.metrics.record_overlap(monitor_id)
                continue

            entry.state = ScheduleState.RUNNING
            entry.in_flight = True
            return entry, due_at

        return None

    # ------------------------------------------------------------------
    # 运行

    async def _worker(self, index: int):
        self.logger.debug(f"worker-{index} 已启动")
        while not self._stopping:
            item = await self._next_due()
            if item is None:
                break

            entry, due_at = item
            try:
                await self._run(entry, due_at)
            except Exception as e:
                self.logger.error(f"监控 {entry.monitor.monitor_id} 运行异常: {e}", exc_info=True)
        self.logger.debug(f"worker-{index} 已退出")

    def _is_live(self, entry: ScheduleEntry) -> bool:
        return self._entries.get(entry.monitor.monitor_id) is entry \
            and entry.state != ScheduleState.REMOVED

    async def _in_maintenance(self, monitor: Monitor, at: datetime) -> bool:
        if monitor.in_maintenance(at):
            return True
        try:
            return await self.gateway.is_under_maintenance(monitor.monitor_id, at)
        except Exception as e:
            self.logger.warning(f"查询监控 {monitor.monitor_id} 维护窗口失败: {e}")
            return False

    async def _run(self, entry: ScheduleEntry, due_at: float):
        monitor = entry.monitor
        monitor_id = monitor.monitor_id
        started_at = time.monotonic()
        entry.last_started = datetime.now()
        entry.run_count += 1
        self.metrics.record_start(monitor_id, started_at - due_at, monitor.interval)

        try:
            if await self._in_maintenance(monitor, entry.last_started):
                self.metrics.skipped_for_maintenance += 1
                self.logger.info(f"监控 {monitor_id} 处于维护窗口，跳过本次检查")
                return

            outcome = await self.executor.probe_monitor(monitor)
            if not outcome.success and outcome.reason == FailureReason.UNKNOWN:
                self.metrics.probe_errors += 1

            self.logger.debug(
                f"监控 {monitor_id} 检查完成: {'成功' if outcome.success else outcome.reason}, "
                f"耗时: {outcome.latency:.3f}s")

            event = await self._commit(entry, outcome)
            if event is not None and self._is_live(entry):
                self._notify(event, monitor)
        finally:
            entry.in_flight = False
            self.metrics.record_completion()
            await self._complete(entry)

    async def _commit(self, entry: ScheduleEntry,
                      outcome: ProbeOutcome) -> Optional[TransitionEvent]:
        """写入探测结果，持久化失败时按配置重试"""
        monitor_id = outcome.monitor_id

        def should_commit() -> bool:
            live = self._is_live(entry)
            if not live:
                self.metrics.discarded_outcomes += 1
            return live

        if not should_commit():
            self.logger.info(f"监控 {monitor_id} 已被删除，丢弃探测结果")
            return None

        try:
            return await retry_async(
                lambda: self.tracker.record(outcome, should_commit=should_commit),
                self.persistence_retry,
                description=f"监控 {monitor_id} 状态写入"
            )
        except PersistenceError as e:
            self.metrics.persistence_failures += 1
            self.logger.error(f"监控 {monitor_id} 状态写入失败，放弃本次结果: {e.format_error()}")
            return None

    async def _complete(self, entry: ScheduleEntry):
        """运行结束后计算下一次触发时间"""
        completed_at = time.monotonic()
        entry.last_completed = datetime.now()
        entry.last_completed_at = completed_at
        monitor = entry.monitor

        if not self._is_live(entry):
            return

        next_due = entry.last_completed + timedelta(seconds=monitor.interval)
        try:
            await self.gateway.update_monitor_scheduling_meta(
                monitor.monitor_id, entry.last_completed, next_due)
        except Exception as e:
            self.logger.warning(f"更新监控 {monitor.monitor_id} 调度元数据失败: {e}")

        if entry.state == ScheduleState.RUNNING and self._is_live(entry):
            entry.state = ScheduleState.SCHEDULED
            if not self._stopping:
                self._push(entry, completed_at + monitor.interval)

    def _notify(self, event: TransitionEvent, monitor: Monitor):
        task = asyncio.create_task(self._dispatch(event, monitor))
        self._notification_tasks.add(task)
        task.add_done_callback(self._notification_tasks.discard)

    async def _dispatch(self, event: TransitionEvent, monitor: Monitor):
        try:
            await self.dispatcher.dispatch(event, monitor.channels, monitor.name)
        except Exception as e:
            self.logger.error(f"监控 {monitor.monitor_id} 通知发送异常: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # 对外操作

    def _get_entry(self, monitor_id: str) -> ScheduleEntry:
        entry = self._entries.get(monitor_id)
        if entry is None:
            raise SchedulerError(f"监控 {monitor_id} 不存在",
                                 error_code=ErrorCode.MONITOR_NOT_FOUND, monitor_id=monitor_id)
        return entry

    def create_schedule(self, monitor: Monitor):
        """
        添加监控并立即安排第一次检查

        Args:
            monitor: 监控定义，active=False 时以暂停状态加入

        Raises:
            ConfigError: 监控定义无效
            SchedulerError: 监控已存在或调度器已停止
        """
        if self._stopping:
            raise SchedulerError("调度器已停止，无法添加监控", monitor_id=monitor.monitor_id)

        monitor.validate(self.min_interval)
        monitor_id = monitor.monitor_id
        if monitor_id in self._entries:
            raise SchedulerError(f"监控 {monitor_id} 已存在", monitor_id=monitor_id)

        entry = ScheduleEntry(monitor=monitor)
        self._entries[monitor_id] = entry
        self._removed.discard(monitor_id)

        if monitor.active:
            self._push(entry, time.monotonic())
        else:
            entry.state = ScheduleState.PAUSED

        self.logger.info(
            f"添加监控 {monitor_id}: 类型={monitor.kind.value}, 目标={monitor.target}, "
            f"间隔={monitor.interval}秒, 状态={entry.state.value}")

    def update_monitor(self, monitor: Monitor):
        """
        替换监控定义，正在进行的运行不受影响，下一次运行使用新定义

        Raises:
            ConfigError: 监控定义无效
            SchedulerError: 监控不存在
        """
        monitor.validate(self.min_interval)
        entry = self._get_entry(monitor.monitor_id)
        old_interval = entry.monitor.interval
        entry.monitor = monitor

        if monitor.interval != old_interval:
            self._reschedule_for_interval(entry)
        self.logger.info(f"更新监控 {monitor.monitor_id} 的定义")

    def update_interval(self, monitor_id: str, seconds: float):
        """
        更新检查间隔

        Raises:
            ConfigError: 间隔小于最小间隔
            SchedulerError: 监控不存在
        """
        entry = self._get_entry(monitor_id)
        updated = replace(entry.monitor, interval=seconds)
        updated.validate(self.min_interval)

        old_interval = entry.monitor.interval
        entry.monitor = updated
        self._reschedule_for_interval(entry)
        self.logger.info(f"更新监控 {monitor_id} 检查间隔: {old_interval}s -> {seconds}s")

    def _reschedule_for_interval(self, entry: ScheduleEntry):
        # 只有等待中的监控需要重新计算；运行中的监控在结束时使用新间隔
        if entry.state != ScheduleState.SCHEDULED:
            return
        now = time.monotonic()
        base = entry.last_completed_at if entry.last_completed_at is not None else now
        self._push(entry, max(now, base + entry.monitor.interval))

    def pause(self, monitor_id: str):
        """
        暂停监控，正在进行的运行会完成但不再安排下一次

        Raises:
            SchedulerError: 监控不存在
        """
        entry = self._get_entry(monitor_id)
        if entry.state == ScheduleState.PAUSED:
            return
        entry.state = ScheduleState.PAUSED
        entry.generation += 1
        self.logger.info(f"暂停监控 {monitor_id}")

    def resume(self, monitor_id: str):
        """
        恢复监控，立即安排一次检查

        Raises:
            SchedulerError: 监控不存在
        """
        entry = self._get_entry(monitor_id)
        if entry.state != ScheduleState.PAUSED:
            return

        if entry.in_flight:
            # 上一次运行结束时会按间隔重新安排
            entry.state = ScheduleState.RUNNING
        else:
            entry.state = ScheduleState.SCHEDULED
            self._push(entry, time.monotonic())
        self.logger.info(f"恢复监控 {monitor_id}")

    def remove(self, monitor_id: str):
        """
        删除监控，正在进行的运行结果会被丢弃

        Raises:
            SchedulerError: 监控不存在
        """
        entry = self._get_entry(monitor_id)
        entry.state = ScheduleState.REMOVED
        del self._entries[monitor_id]
        self._removed.add(monitor_id)
        self.tracker.forget(monitor_id)
        self.logger.info(f"删除监控 {monitor_id}")

    def check_now(self, monitor_id: str) -> bool:
        """
        让等待中的监控立即到期

        Returns:
            bool: 是否已安排；运行中或已暂停的监控返回 False

        Raises:
            SchedulerError: 监控不存在
        """
        entry = self._get_entry(monitor_id)
        if entry.state != ScheduleState.SCHEDULED:
            return False
        self._push(entry, time.monotonic())
        return True

    async def test_channel(self, config: Union[NotificationChannelConfig, Dict[str, Any]]
                           ) -> DeliveryResult:
        """立即向渠道发送一条测试消息，不会抛出异常"""
        if isinstance(config, dict):
            try:
                config = channel_config_from_dict(config)
            except UptimeMonitorError as e:
                return DeliveryResult(channel_type=str(config.get('type', 'unknown')),
                                      target=str(config), success=False, error=e.message)
        return await self.dispatcher.test_channel(config)

    async def load_from_gateway(self) -> int:
        """
        从持久化网关加载启用的监控

        Returns:
            int: 成功加载的监控数量

        Raises:
            PersistenceError: 重试后仍无法读取
        """
        monitors = await retry_async(self.gateway.load_active_monitors, self.persistence_retry,
                                     description="加载监控列表")
        loaded = 0
        for monitor in monitors:
            try:
                self.create_schedule(monitor)
                loaded += 1
            except (ConfigError, SchedulerError) as e:
                self.logger.error(f"加载监控 {monitor.monitor_id} 失败: {e.message}")

        self.logger.info(f"从持久化网关加载了 {loaded}/{len(monitors)} 个监控")
        return loaded

    async def start(self):
        """
        启动 worker 池

        Raises:
            SchedulerError: worker 池无法启动（不可恢复）
        """
        if self.is_running:
            self.logger.warning("调度协调器已经在运行")
            return
        if self._stopping:
            raise SchedulerError("调度协调器已关闭，不能再次启动",
                                 error_code=ErrorCode.SCHEDULER_START_ERROR, recoverable=False)

        try:
            self._thread_pool = ThreadPoolExecutor(max_workers=self.max_workers,
                                                   thread_name_prefix='probe')
            self.executor.set_thread_pool(self._thread_pool)
            self._workers = [asyncio.create_task(self._worker(i))
                             for i in range(self.max_workers)]
        except (RuntimeError, ValueError, OSError) as e:
            raise SchedulerError(f"worker 池启动失败: {e}",
                                 error_code=ErrorCode.SCHEDULER_START_ERROR,
                                 cause=e, recoverable=False)

        self.is_running = True
        self.logger.info(f"启动调度协调器，worker 数量: {self.max_workers}, "
                         f"监控数量: {len(self._entries)}")

    async def shutdown(self):
        """停止调度：等待进行中的运行和通知完成后关闭线程池，可重复调用"""
        if self._stopped:
            return

        self.logger.info("正在停止调度协调器...")
        self._stopping = True
        self._wakeup.set()

        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers = []

        if self._notification_tasks:
            self.logger.info(f"等待 {len(self._notification_tasks)} 个通知任务完成")
            await asyncio.gather(*list(self._notification_tasks), return_exceptions=True)

        if self._thread_pool:
            self._thread_pool.shutdown(wait=True)
            self._thread_pool = None

        self.is_running = False
        self._stopped = True
        self.logger.info("调度协调器已停止")

    # ------------------------------------------------------------------
    # 查询

    def get_state(self, monitor_id: str) -> Optional[ScheduleState]:
        """获取监控的调度状态，已删除的监控返回 removed，未知监控返回 None"""
        entry = self._entries.get(monitor_id)
        if entry is not None:
            return entry.state
        if monitor_id in self._removed:
            return ScheduleState.REMOVED
        return None

    def get_monitor(self, monitor_id: str) -> Optional[Monitor]:
        entry = self._entries.get(monitor_id)
        return entry.monitor if entry else None

    def get_schedule_status(self) -> Dict[str, Any]:
        """获取所有监控的调度状态"""
        status = {}
        now = time.monotonic()

        for monitor_id, entry in self._entries.items():
            monitor = entry.monitor
            record = self.tracker.get_snapshot(monitor_id)

            next_check = None
            if entry.state == ScheduleState.SCHEDULED and entry.due_at is not None:
                next_check = datetime.now() + timedelta(seconds=max(entry.due_at - now, 0.0))

            status[monitor_id] = {
                'name': monitor.name,
                'type': monitor.kind.value,
                'target': monitor.target,
                'state': entry.state.value,
                'interval': monitor.interval,
                'status': record.status.value if record else monitor.status.value,
                'consecutive_failures': record.consecutive_failures if record else 0,
                'last_check_time': entry.last_completed.isoformat() if entry.last_completed else None,
                'next_check_time': next_check.isoformat() if next_check else None,
                'run_count': entry.run_count,
                'last_lag': self.metrics.last_lag.get(monitor_id),
            }

        return status

    def get_scheduler_stats(self) -> Dict[str, Any]:
        """获取调度器统计信息"""
        states: Dict[str, int] = {}
        for entry in self._entries.values():
            states[entry.state.value] = states.get(entry.state.value, 0) + 1

        stats = {
            'is_running': self.is_running,
            'total_monitors': len(self._entries),
            'max_workers': self.max_workers,
            'running': sum(1 for entry in self._entries.values() if entry.in_flight),
            'states': states,
            'pending_notifications': len(self._notification_tasks),
            'ready_queue_size': len(self._heap),
            'metrics': self.metrics.to_dict(),
        }

        try:
            stats['process'] = collect_process_metrics().to_dict()
        except psutil.Error as e:
            self.logger.debug(f"采集进程指标失败: {e}")

        return stats
