"""配置文件监控器

配置文件变化后重新加载，并把监控列表的差异转换为调度协调器上的操作：
新增 -> create_schedule，删除 -> remove，启用/停用 -> resume/pause，
间隔变化 -> update_interval，其他变化 -> update_monitor。
"""

import asyncio
import os
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .config_manager import ConfigManager
from ..models.monitor import Monitor, ScheduleState
from ..utils.exceptions import ConfigError, UptimeMonitorError
from ..utils.log_manager import get_logger


class ConfigFileHandler(FileSystemEventHandler):
    """配置文件变更事件处理器（在 watchdog 线程中运行）"""

    def __init__(self, config_path: str, callback: Callable[[], None]):
        self.config_path = config_path
        self.callback = callback
        self.logger = get_logger('config_watcher.handler')

    def _matches(self, path) -> bool:
        return os.path.abspath(os.fsdecode(path)) == self.config_path

    def on_modified(self, event):
        if not event.is_directory and self._matches(event.src_path):
            self.logger.info(f"检测到配置文件变更: {self.config_path}")
            self.callback()

    def on_moved(self, event):
        # 编辑器通常先写临时文件再改名覆盖
        if not event.is_directory and self._matches(getattr(event, 'dest_path', '')):
            self.logger.info(f"检测到配置文件被替换: {self.config_path}")
            self.callback()

    on_created = on_modified


@dataclass
class MonitorChanges:
    """两份监控列表之间的差异"""
    added: List[Monitor] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    updated: List[Monitor] = field(default_factory=list)
    interval_changed: List[Monitor] = field(default_factory=list)
    paused: List[str] = field(default_factory=list)
    resumed: List[Monitor] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not any((self.added, self.removed, self.updated, self.interval_changed,
                        self.paused, self.resumed))


def _definition(monitor: Monitor) -> dict:
    data = monitor.to_dict()
    data.pop('active')
    data.pop('interval')
    return data


def diff_monitors(old: Dict[str, Monitor], new: Dict[str, Monitor]) -> MonitorChanges:
    """
    比较两份监控列表

    Args:
        old: 旧的监控定义（按标识索引）
        new: 新的监控定义（按标识索引）

    Returns:
        MonitorChanges: 差异
    """
    changes = MonitorChanges()

    for monitor_id, monitor in new.items():
        previous = old.get(monitor_id)
        if previous is None:
            changes.added.append(monitor)
            continue

        if _definition(previous) != _definition(monitor):
            changes.updated.append(monitor)
        elif previous.interval != monitor.interval:
            changes.interval_changed.append(monitor)

        if previous.active and not monitor.active:
            changes.paused.append(monitor_id)
        elif not previous.active and monitor.active:
            changes.resumed.append(monitor)

    changes.removed = [monitor_id for monitor_id in old if monitor_id not in new]
    return changes


class ConfigWatcher:
    """配置文件监控器，支持热更新（watchdog 事件与异步轮询两种方式）"""

    def __init__(self, config_manager: ConfigManager, coordinator=None):
        """
        初始化配置监控器

        Args:
            config_manager: 配置管理器实例
            coordinator: 调度协调器，为 None 时只重新加载配置并调用回调
        """
        self.config_manager = config_manager
        self.coordinator = coordinator
        self.observer: Optional[Observer] = None
        self.logger = get_logger('config_watcher')
        self.change_callbacks: List[Callable] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._reload_lock: Optional[asyncio.Lock] = None
        self._running = False

    def add_change_callback(self, callback: Callable):
        """添加配置变更回调函数，参数为 (old_config, new_config)"""
        self.change_callbacks.append(callback)

    def remove_change_callback(self, callback: Callable):
        if callback in self.change_callbacks:
            self.change_callbacks.remove(callback)

    def _monitors_of(self, config: dict) -> Dict[str, Monitor]:
        return {m.monitor_id: m for m in self.config_manager.get_monitors(config)}

    async def reload(self) -> Optional[MonitorChanges]:
        """
        重新加载配置并应用差异

        Returns:
            Optional[MonitorChanges]: 应用的差异，配置无效时返回 None
        """
        if self._reload_lock is None:
            self._reload_lock = asyncio.Lock()

        async with self._reload_lock:
            old_config = self.config_manager.config
            try:
                new_config = self.config_manager.reload_config()
            except ConfigError as e:
                self.logger.error(f"配置重新加载失败: {e.message}")
                return None

            changes = diff_monitors(self._monitors_of(old_config), self._monitors_of(new_config))
            self.logger.info("配置文件已重新加载")

            if self.coordinator is not None and not changes.is_empty():
                self.apply_changes(changes)

            for callback in self.change_callbacks:
                try:
                    result = callback(old_config, new_config)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception as e:
                    self.logger.error(f"配置变更回调执行失败: {e}")

            return changes

    def apply_changes(self, changes: MonitorChanges):
        """把差异转换为调度协调器上的操作，单个监控失败不影响其他监控"""
        coordinator = self.coordinator

        def attempt(description: str, operation: Callable, *args):
            try:
                operation(*args)
            except UptimeMonitorError as e:
                self.logger.error(f"{description}失败: {e.message}")

        for monitor_id in changes.removed:
            attempt(f"删除监控 {monitor_id} ", coordinator.remove, monitor_id)

        for monitor in changes.added:
            attempt(f"添加监控 {monitor.monitor_id} ", coordinator.create_schedule, monitor)

        for monitor in changes.updated:
            attempt(f"更新监控 {monitor.monitor_id} ", coordinator.update_monitor, monitor)

        for monitor in changes.interval_changed:
            attempt(f"更新监控 {monitor.monitor_id} 的检查间隔", coordinator.update_interval,
                    monitor.monitor_id, monitor.interval)

        for monitor_id in changes.paused:
            attempt(f"暂停监控 {monitor_id} ", coordinator.pause, monitor_id)

        for monitor in changes.resumed:
            if coordinator.get_state(monitor.monitor_id) in (None, ScheduleState.REMOVED):
                attempt(f"添加监控 {monitor.monitor_id} ", coordinator.create_schedule, monitor)
            else:
                attempt(f"恢复监控 {monitor.monitor_id} ", coordinator.resume,
                        monitor.monitor_id)

        self.logger.info(
            f"配置变更已应用: 新增 {len(changes.added)}, 删除 {len(changes.removed)}, "
            f"修改 {len(changes.updated) + len(changes.interval_changed)}, "
            f"暂停 {len(changes.paused)}, 恢复 {len(changes.resumed)}")

    def _on_file_event(self):
        """watchdog 线程回调，切换到事件循环中执行重新加载"""
        if self._loop is None or self._loop.is_closed():
            return
        future = asyncio.run_coroutine_threadsafe(self.reload(), self._loop)
        future.add_done_callback(self._log_reload_failure)

    def _log_reload_failure(self, future):
        if not future.cancelled() and future.exception() is not None:
            self.logger.error(f"配置重新加载异常: {future.exception()}")

    def start_watching(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        """
        开始监控配置文件

        Args:
            loop: 执行重新加载的事件循环，默认使用当前运行中的循环

        Raises:
            ConfigError: 启动监控失败
        """
        if self._running:
            self.logger.warning("配置监控器已经在运行")
            return

        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
        self._loop = loop

        config_path = os.path.abspath(self.config_manager.config_path)
        try:
            self.observer = Observer()
            self.observer.schedule(ConfigFileHandler(config_path, self._on_file_event),
                                   os.path.dirname(config_path), recursive=False)
            self.observer.start()
        except OSError as e:
            self.logger.error(f"启动配置监控失败: {e}")
            raise ConfigError(f"启动配置监控失败: {e}", cause=e)

        self._running = True
        self.logger.info(f"开始监控配置文件: {self.config_manager.config_path}")

    def stop_watching(self):
        """停止监控配置文件"""
        if not self._running:
            return

        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None

        self._running = False
        self.logger.info("配置文件监控已停止")

    def is_running(self) -> bool:
        return self._running

    async def watch_config_changes_async(self, check_interval: float = 5):
        """
        异步方式监控配置变更（轮询方式）

        Args:
            check_interval: 检查间隔（秒）
        """
        self.logger.info(f"开始异步监控配置文件变更，检查间隔: {check_interval}秒")

        try:
            while True:
                try:
                    if self.config_manager.is_config_changed():
                        self.logger.info("检测到配置文件变更")
                        await self.reload()
                except Exception as e:
                    self.logger.error(f"配置变更检查失败: {e}")
                await asyncio.sleep(check_interval)
        except asyncio.CancelledError:
            self.logger.info("配置监控任务已取消")
