"""JSON 文件持久化网关"""

import asyncio
import json
import os
import tempfile
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any

from .memory_store import MemoryStore
from ..models.monitor import Monitor, ProbeOutcome, StatusRecord
from ..utils.error_handler import retry_on_error
from ..utils.exceptions import PersistenceError, ErrorCode
from ..utils.log_manager import get_logger

STATE_VERSION = 1


class JsonFileStore(MemoryStore):
    """把状态、调度元数据和最近的探测历史写入 JSON 文件

    每次写入后整体落盘（临时文件 + 原子替换），启动时从文件恢复。
    监控定义来自配置文件，不写入状态文件。
    """

    def __init__(self, state_file: str, monitors: Optional[List[Monitor]] = None,
                 history_limit: int = 100):
        """
        初始化 JSON 文件存储

        Args:
            state_file: 状态文件路径
            monitors: 初始监控列表
            history_limit: 每个监控写入文件的历史条数

        Raises:
            PersistenceError: 状态文件存在但无法读取（不可恢复）
        """
        super().__init__(monitors, history_limit)
        self.logger = get_logger('storage.json')
        self.state_file = Path(state_file)
        self._write_lock: Optional[asyncio.Lock] = None
        self._load_state()

    def _load_state(self):
        """从文件加载状态"""
        if not self.state_file.exists():
            self.logger.info(f"状态文件不存在，将在首次写入时创建: {self.state_file}")
            return

        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                state_data = json.load(f)

            for monitor_id, data in state_data.get('statuses', {}).items():
                self.statuses[monitor_id] = StatusRecord.from_dict(data)

            for monitor_id, items in state_data.get('history', {}).items():
                for item in items:
                    outcome = ProbeOutcome.from_dict(item)
                    self.history.setdefault(monitor_id, deque()).append(outcome)
                    self._history_keys.add((outcome.monitor_id, outcome.timestamp))

            for monitor_id, meta in state_data.get('scheduling_meta', {}).items():
                self.scheduling_meta[monitor_id] = {
                    key: datetime.fromisoformat(value) if value else None
                    for key, value in meta.items()
                }
        except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
            raise PersistenceError(
                f"状态文件无法读取: {self.state_file}: {e}",
                error_code=ErrorCode.PERSISTENCE_READ_ERROR,
                cause=e,
                recoverable=False
            )

        self.logger.info(
            f"从 {self.state_file} 加载了 {len(self.statuses)} 个监控的状态")

    def _serialize(self) -> Dict[str, Any]:
        return {
            'version': STATE_VERSION,
            'last_updated': datetime.now().isoformat(),
            'statuses': {mid: record.to_dict() for mid, record in self.statuses.items()},
            'history': {
                mid: [outcome.to_dict() for outcome in list(history)[-self.history_limit:]]
                for mid, history in self.history.items()
            },
            'scheduling_meta': {
                mid: {key: value.isoformat() if value else None for key, value in meta.items()}
                for mid, meta in self.scheduling_meta.items()
            },
        }

    @retry_on_error(max_attempts=3, base_delay=0.1)
    def _write_file(self, state_data: Dict[str, Any]):
        """写入临时文件后原子替换"""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=str(self.state_file.parent),
                                        prefix=f".{self.state_file.name}.", suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(state_data, f, ensure_ascii=False, indent=2)
            os.replace(tmp_path, self.state_file)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def _save_state(self):
        """保存状态到文件"""
        try:
            self._write_file(self._serialize())
        except OSError as e:
            self.logger.error(f"保存状态文件失败: {e}")
            raise PersistenceError(f"保存状态文件失败: {e}", cause=e)

    async def _save_state_async(self):
        """在线程池中落盘，写入按调用顺序串行"""
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()

        async with self._write_lock:
            state_data = self._serialize()
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(None, self._write_file, state_data)
            except OSError as e:
                self.logger.error(f"保存状态文件失败: {e}")
                raise PersistenceError(f"保存状态文件失败: {e}", cause=e)

    async def save_status(self, monitor_id: str, record: StatusRecord) -> None:
        await super().save_status(monitor_id, record)
        await self._save_state_async()

    async def append_history(self, outcome: ProbeOutcome) -> None:
        # 历史随下一次状态写入一起落盘，文件中的状态不会领先于历史
        await super().append_history(outcome)

    async def update_monitor_scheduling_meta(self, monitor_id: str,
                                             last_checked: Optional[datetime],
                                             next_due: Optional[datetime]) -> None:
        # 调度元数据随下一次状态写入或关闭时落盘
        await super().update_monitor_scheduling_meta(monitor_id, last_checked, next_due)

    def remove_monitor(self, monitor_id: str):
        super().remove_monitor(monitor_id)
        self._save_state()

    async def close(self) -> None:
        await self._save_state_async()
        self.logger.info(f"状态已保存到 {self.state_file}")
