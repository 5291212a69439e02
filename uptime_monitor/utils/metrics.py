"""调度指标模块

记录调度延迟、并发与丢弃情况，并提供进程资源快照。
执行延迟超过检查间隔只作为指标暴露，不视为故障。
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Dict, Any, Optional

import psutil


@dataclass
class ProcessMetrics:
    """进程资源快照"""
    timestamp: datetime
    cpu_percent: float
    memory_percent: float
    memory_used_mb: float
    active_threads: int
    active_tasks: int

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        data = asdict(self)
        data['timestamp'] = self.timestamp.isoformat()
        return data


def collect_process_metrics(process: Optional[psutil.Process] = None) -> ProcessMetrics:
    """采集当前进程的 CPU、内存和线程信息

    Args:
        process: psutil 进程对象，默认当前进程

    Returns:
        进程资源快照
    """
    process = process or psutil.Process()
    memory_info = process.memory_info()
    system_memory = psutil.virtual_memory()

    active_tasks = 0
    try:
        loop = asyncio.get_running_loop()
        active_tasks = len([task for task in asyncio.all_tasks(loop) if not task.done()])
    except RuntimeError:
        # 没有运行中的事件循环
        pass

    return ProcessMetrics(
        timestamp=datetime.now(),
        cpu_percent=process.cpu_percent(),
        memory_percent=(memory_info.rss / system_memory.total) * 100,
        memory_used_mb=memory_info.rss / 1024 / 1024,
        active_threads=process.num_threads(),
        active_tasks=active_tasks
    )


class SchedulerMetrics:
    """调度器运行指标

    调度延迟 = 实际开始时间 - 应触发时间。池饱和时延迟会增长，
    超过监控间隔的运行计入 lagging_runs。
    """

    def __init__(self, history_size: int = 500):
        """初始化调度指标

        Args:
            history_size: 保留的延迟样本数量
        """
        self.lag_samples: deque = deque(maxlen=history_size)
        self.runs_started = 0
        self.runs_completed = 0
        self.lagging_runs = 0
        self.overlapping_runs = 0
        self.skipped_for_maintenance = 0
        self.discarded_outcomes = 0
        self.persistence_failures = 0
        self.probe_errors = 0
        self.max_lag = 0.0
        self.last_lag: Dict[str, float] = {}
        self.logger = logging.getLogger(__name__)

    def record_start(self, monitor_id: str, lag: float, interval: float):
        """记录一次运行开始"""
        lag = max(lag, 0.0)
        self.runs_started += 1
        self.lag_samples.append(lag)
        self.last_lag[monitor_id] = lag
        self.max_lag = max(self.max_lag, lag)

        if lag > interval:
            self.lagging_runs += 1
            self.logger.warning(
                f"监控 {monitor_id} 调度延迟 {lag:.3f}s 超过检查间隔 {interval:.3f}s")

    def record_completion(self):
        """记录一次运行结束"""
        self.runs_completed += 1

    def record_overlap(self, monitor_id: str):
        """记录同一监控的重叠运行（正常情况下永远为0）"""
        self.overlapping_runs += 1
        self.logger.error(f"监控 {monitor_id} 出现重叠运行")

    def average_lag(self) -> float:
        """平均调度延迟"""
        if not self.lag_samples:
            return 0.0
        return sum(self.lag_samples) / len(self.lag_samples)

    def to_dict(self) -> Dict[str, Any]:
        """导出指标"""
        return {
            'runs_started': self.runs_started,
            'runs_completed': self.runs_completed,
            'lagging_runs': self.lagging_runs,
            'overlapping_runs': self.overlapping_runs,
            'skipped_for_maintenance': self.skipped_for_maintenance,
            'discarded_outcomes': self.discarded_outcomes,
            'persistence_failures': self.persistence_failures,
            'probe_errors': self.probe_errors,
            'avg_lag': self.average_lag(),
            'max_lag': self.max_lag,
            'sample_count': len(self.lag_samples)
        }
