#!/usr/bin/env python3
"""
在线监控引擎主程序入口

组装配置、探测、状态跟踪、通知和调度组件，
处理信号并在退出时优雅关闭。
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from typing import Optional, Dict, Any, List

from uptime_monitor import __version__
from uptime_monitor.models.monitor import Monitor
from uptime_monitor.notifications.dispatcher import NotificationDispatcher
from uptime_monitor.notifications.transports import SmtpEmailTransport, HttpWebhookTransport
from uptime_monitor.probes.executor import ProbeExecutor
from uptime_monitor.services.config_manager import ConfigManager
from uptime_monitor.services.config_watcher import ConfigWatcher
from uptime_monitor.services.schedule_coordinator import ScheduleCoordinator
from uptime_monitor.services.status_tracker import StatusTracker
from uptime_monitor.storage.gateway import PersistenceGateway
from uptime_monitor.storage.json_store import JsonFileStore
from uptime_monitor.storage.memory_store import MemoryStore
from uptime_monitor.utils.exceptions import UptimeMonitorError, ConfigError
from uptime_monitor.utils.log_manager import log_manager, get_logger


class UptimeMonitorApp:
    """在线监控主应用程序类"""

    def __init__(self, config_path: str, log_overrides: Optional[Dict[str, Any]] = None):
        """初始化应用程序

        Args:
            config_path: 配置文件路径
            log_overrides: 命令行指定的日志配置，覆盖配置文件
        """
        self.config_path = config_path
        self.log_overrides = log_overrides or {}
        self.logger: Optional[logging.Logger] = None
        self.is_running = False
        self.shutdown_event = asyncio.Event()

        # 核心组件
        self.config_manager: Optional[ConfigManager] = None
        self.config_watcher: Optional[ConfigWatcher] = None
        self.gateway: Optional[PersistenceGateway] = None
        self.executor: Optional[ProbeExecutor] = None
        self.tracker: Optional[StatusTracker] = None
        self.dispatcher: Optional[NotificationDispatcher] = None
        self.coordinator: Optional[ScheduleCoordinator] = None

        self.background_tasks = set()

    async def initialize(self):
        """初始化应用程序组件

        Raises:
            ConfigError: 配置无效
            PersistenceError: 状态文件无法读取
        """
        try:
            self.config_manager = ConfigManager(self.config_path)
            self.config_manager.load_config()
            global_config = self.config_manager.get_global_config()

            self._configure_logging(global_config)
            self.logger = get_logger('main')
            self.logger.info("开始初始化在线监控引擎")

            monitors = self.config_manager.get_monitors()
            self.gateway = self._create_gateway(global_config, monitors)

            self.executor = ProbeExecutor({
                'ping_count': global_config.get('ping_count', 1),
            })
            self.tracker = StatusTracker(
                self.gateway,
                failure_threshold=global_config['failure_threshold'],
                recovery_threshold=global_config['recovery_threshold']
            )
            self.dispatcher = NotificationDispatcher(
                SmtpEmailTransport(self.config_manager.get_smtp_config()),
                HttpWebhookTransport(timeout=global_config['notification_timeout']),
                timeout=global_config['notification_timeout']
            )
            self.coordinator = ScheduleCoordinator(
                self.gateway, self.executor, self.tracker, self.dispatcher,
                max_workers=global_config['max_workers'],
                min_interval=global_config['min_interval'],
                persistence_retry=self.config_manager.get_persistence_retry()
            )

            self.config_watcher = ConfigWatcher(self.config_manager, self.coordinator)
            self.config_watcher.add_change_callback(self._on_config_changed_callback)

            self.logger.info(f"应用程序组件初始化完成，共 {len(monitors)} 个监控")

        except Exception as e:
            if self.logger:
                self.logger.error(f"应用程序初始化失败: {e}", exc_info=True)
            else:
                print(f"应用程序初始化失败: {e}", file=sys.stderr)
            raise

    def _configure_logging(self, global_config: Dict[str, Any]):
        """配置日志系统"""
        log_config = {
            'log_level': global_config.get('log_level', 'INFO'),
            'log_file': global_config.get('log_file'),
            'enable_console': True,
        }
        if global_config.get('log_file'):
            log_config['max_file_size'] = global_config.get('max_log_size', 10 * 1024 * 1024)
            log_config['backup_count'] = global_config.get('log_backup_count', 5)

        log_config.update(self.log_overrides)
        log_manager.configure(log_config)

    @staticmethod
    def _create_gateway(global_config: Dict[str, Any],
                        monitors: List[Monitor]) -> PersistenceGateway:
        state_file = global_config.get('state_file')
        if state_file:
            return JsonFileStore(state_file, monitors)
        return MemoryStore(monitors)

    def _on_config_changed_callback(self, old_config: Dict[str, Any],
                                    new_config: Dict[str, Any]):
        """配置文件变更回调：同步日志配置和网关中的监控定义"""
        self._configure_logging(self.config_manager.get_global_config())

        if isinstance(self.gateway, MemoryStore):
            new_monitors = {m.monitor_id: m for m in self.config_manager.get_monitors(new_config)}
            for monitor_id in list(self.gateway.monitors):
                if monitor_id not in new_monitors:
                    self.gateway.remove_monitor(monitor_id)
            for monitor in new_monitors.values():
                self.gateway.add_monitor(monitor)

    async def start(self):
        """启动应用程序，直到收到关闭信号"""
        if self.is_running:
            self.logger.warning("应用程序已经在运行")
            return

        try:
            self.is_running = True
            self.logger.info("启动在线监控引擎")

            await self.coordinator.load_from_gateway()
            await self.coordinator.start()

            self.config_watcher.start_watching(asyncio.get_running_loop())
            config_watcher_task = asyncio.create_task(
                self.config_watcher.watch_config_changes_async()
            )
            self.background_tasks.add(config_watcher_task)
            config_watcher_task.add_done_callback(self.background_tasks.discard)

            self.logger.info("在线监控引擎启动完成")

            await self.shutdown_event.wait()

        except Exception as e:
            self.logger.error(f"应用程序运行异常: {e}", exc_info=True)
            raise
        finally:
            await self.stop()

    async def stop(self):
        """停止应用程序"""
        if not self.is_running:
            return

        self.logger.info("正在停止在线监控引擎...")
        self.is_running = False

        if self.config_watcher:
            self.config_watcher.stop_watching()

        for task in self.background_tasks:
            if not task.done():
                task.cancel()
        if self.background_tasks:
            await asyncio.gather(*self.background_tasks, return_exceptions=True)
        self.background_tasks.clear()

        if self.coordinator:
            await self.coordinator.shutdown()

        if self.gateway:
            try:
                await self.gateway.close()
            except UptimeMonitorError as e:
                self.logger.error(f"关闭持久化网关失败: {e}")

        self.logger.info("在线监控引擎已停止")
        log_manager.cleanup()

    def shutdown(self):
        """触发应用程序关闭"""
        if self.logger:
            self.logger.info("收到关闭信号")
        self.shutdown_event.set()

    def get_status(self) -> Dict[str, Any]:
        """获取应用程序状态"""
        status = {
            'is_running': self.is_running,
            'config_path': self.config_path,
            'background_tasks_count': len(self.background_tasks)
        }

        if self.coordinator:
            status['scheduler_stats'] = self.coordinator.get_scheduler_stats()
            status['monitor_status'] = self.coordinator.get_schedule_status()

        if self.dispatcher:
            status['notification_stats'] = dict(self.dispatcher.stats)

        return status


# 全局应用程序实例
app: Optional[UptimeMonitorApp] = None


def signal_handler(signum, frame):
    """信号处理器"""
    signal_name = signal.Signals(signum).name
    print(f"\n收到信号 {signal_name} ({signum})")

    if app:
        app.shutdown()
    else:
        print("应用程序未初始化，直接退出")
        sys.exit(0)


def create_argument_parser() -> argparse.ArgumentParser:
    """创建命令行参数解析器"""
    parser = argparse.ArgumentParser(
        prog='uptime-monitor',
        description='在线监控引擎 - 周期性探测 HTTP/Ping 目标并在状态变化时发送通知',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
示例用法:
  %(prog)s config.yaml                     # 使用指定配置文件启动监控
  %(prog)s --validate config.yaml          # 验证配置文件格式
  %(prog)s --test-channels config.yaml     # 向所有通知渠道发送测试消息
  %(prog)s --check-once config.yaml        # 对所有监控执行一次探测

配置文件格式请参考 config.example.yaml
        """
    )

    parser.add_argument('config_file', nargs='?', help='YAML配置文件路径')
    parser.add_argument('--version', '-v', action='version',
                        version=f'%(prog)s {__version__}')
    parser.add_argument('--validate', action='store_true', help='验证配置文件格式并退出')
    parser.add_argument('--test-channels', action='store_true',
                        help='向配置的所有通知渠道发送测试消息并退出')
    parser.add_argument('--check-once', action='store_true', help='对所有监控执行一次探测后退出')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL'],
                        help='设置日志级别（覆盖配置文件设置）')
    parser.add_argument('--log-file', help='日志文件路径（覆盖配置文件设置）')

    return parser


def validate_config_file(config_path: str) -> bool:
    """验证配置文件

    Returns:
        验证是否成功
    """
    print(f"正在验证配置文件: {config_path}")
    try:
        config_manager = ConfigManager(config_path)
        config_manager.load_config()
        monitors = config_manager.get_monitors()
    except ConfigError as e:
        print(f"❌ 配置文件验证失败: {e.message}")
        return False

    print("✅ 配置文件验证成功!")
    print(f"   - 监控数量: {len(monitors)}")
    for monitor in monitors:
        state = '启用' if monitor.active else '停用'
        print(f"     * {monitor.monitor_id} ({monitor.kind.value}, {monitor.target}, "
              f"间隔 {monitor.interval}s, {state}, 通知渠道 {len(monitor.channels)} 个)")
    return True


async def run_channel_test(config_path: str, log_overrides: Dict[str, Any]) -> bool:
    """向每个监控配置的通知渠道发送测试消息

    Returns:
        是否全部发送成功
    """
    print(f"正在测试通知渠道: {config_path}")
    test_app = UptimeMonitorApp(config_path, log_overrides)
    await test_app.initialize()

    results = []
    for monitor in test_app.config_manager.get_monitors():
        for channel in monitor.channels:
            result = await test_app.coordinator.test_channel(channel)
            results.append(result)
            mark = '✅' if result.success else '❌'
            suffix = '' if result.success else f" - {result.error}"
            print(f"   {mark} {monitor.monitor_id}: {result.target}{suffix}")

    await test_app.coordinator.shutdown()
    if not results:
        print("没有配置任何通知渠道")
        return True
    return all(result.success for result in results)


async def check_once(config_path: str, log_overrides: Dict[str, Any]) -> bool:
    """对所有监控执行一次探测

    Returns:
        是否全部探测成功
    """
    print(f"正在执行探测: {config_path}")
    check_app = UptimeMonitorApp(config_path, log_overrides)
    await check_app.initialize()

    monitors = check_app.config_manager.get_monitors()
    outcomes = await asyncio.gather(
        *(check_app.executor.probe_monitor(monitor) for monitor in monitors))

    print(f"探测完成，共 {len(outcomes)} 个监控:")
    for monitor, outcome in zip(monitors, outcomes):
        if outcome.success:
            print(f"   ✅ {monitor.monitor_id}: UP (耗时: {outcome.latency:.3f}s)")
        else:
            print(f"   ❌ {monitor.monitor_id}: DOWN - {outcome.reason} {outcome.message}")

    await check_app.coordinator.shutdown()
    return all(outcome.success for outcome in outcomes)


async def main():
    """主函数"""
    global app

    parser = create_argument_parser()
    args = parser.parse_args()

    if not args.config_file:
        parser.print_help()
        sys.exit(1)

    config_path = args.config_file
    if not os.path.exists(config_path):
        print(f"配置文件不存在: {config_path}", file=sys.stderr)
        sys.exit(1)

    log_overrides = {}
    if args.log_level:
        log_overrides['log_level'] = args.log_level
    if args.log_file:
        log_overrides['log_file'] = args.log_file

    try:
        if args.validate:
            sys.exit(0 if validate_config_file(config_path) else 1)

        if args.test_channels:
            sys.exit(0 if await run_channel_test(config_path, log_overrides) else 1)

        if args.check_once:
            sys.exit(0 if await check_once(config_path, log_overrides) else 1)

        app = UptimeMonitorApp(config_path, log_overrides)

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

        await app.initialize()

        print(f"在线监控引擎 v{__version__} 已启动")
        print(f"配置文件: {config_path}")
        print("按 Ctrl+C 停止程序")

        await app.start()

    except KeyboardInterrupt:
        print("\n用户中断程序")
    except ConfigError as e:
        print(f"配置错误: {e.format_error()}", file=sys.stderr)
        sys.exit(1)
    except UptimeMonitorError as e:
        print(f"在线监控引擎错误: {e.format_error()}", file=sys.stderr)
        sys.exit(1)
    finally:
        if app:
            await app.stop()


def run():
    """命令行入口"""
    asyncio.run(main())


if __name__ == "__main__":
    run()
