"""探测执行器

对外提供 ``probe(target, kind, timeout) -> ProbeOutcome``。
执行器不向外抛出任何异常：所有失败都映射为探测结果，
调度器不会因为单个异常目标而阻塞或崩溃。
"""

import asyncio
import time
from concurrent.futures import Executor
from datetime import datetime
from typing import Dict, Any, Optional, Tuple, Union

from .base import BaseProbe
from .factory import probe_registry, ProbeRegistry
from ..models.monitor import FailureReason, Monitor, ProbeKind, ProbeOutcome
from ..utils.log_manager import get_logger

# 探测器自身超时之外的额外宽限时间
TIMEOUT_GRACE = 1.0


class ProbeExecutor:
    """探测执行器，按探测类型分派到具体探测器"""

    def __init__(self, probe_config: Optional[Dict[str, Any]] = None,
                 registry: ProbeRegistry = probe_registry):
        """
        初始化探测执行器

        Args:
            probe_config: 传给各探测器的配置（success_codes、ping_count、thread_pool 等）
            registry: 探测器注册表
        """
        self.probe_config = dict(probe_config or {})
        self.registry = registry
        self._probes: Dict[ProbeKind, BaseProbe] = {}
        self.logger = get_logger('probe.executor')

    def set_thread_pool(self, thread_pool: Optional[Executor]):
        """设置阻塞型探测使用的线程池，已创建的探测器会重新创建"""
        self.probe_config['thread_pool'] = thread_pool
        self._probes.clear()

    def _get_probe(self, kind: ProbeKind) -> BaseProbe:
        if kind not in self._probes:
            self._probes[kind] = self.registry.create_probe(kind, self.probe_config)
        return self._probes[kind]

    async def probe(self, target: str, kind: Union[ProbeKind, str], timeout: float,
                    monitor_id: str = '',
                    success_codes: Optional[Tuple[Tuple[int, int], ...]] = None) -> ProbeOutcome:
        """
        执行一次探测

        Args:
            target: 探测目标
            kind: 探测类型
            timeout: 超时时间（秒）
            monitor_id: 所属监控标识
            success_codes: HTTP 成功状态码范围

        Returns:
            ProbeOutcome: 探测结果，永远不会抛出异常
        """
        started = time.monotonic()
        started_at = datetime.now()
        probe_kind = kind if isinstance(kind, ProbeKind) else None

        try:
            probe_kind = ProbeKind(kind)
            probe = self._get_probe(probe_kind)
            return await asyncio.wait_for(
                probe.probe(target, timeout, monitor_id=monitor_id, success_codes=success_codes),
                timeout + TIMEOUT_GRACE
            )
        except asyncio.TimeoutError:
            reason = FailureReason.TIMEOUT
            message = f"探测超过 {timeout:.1f}s 未返回"
        except Exception as e:
            self.logger.error(f"监控 {monitor_id} 探测 {target} 时发生未处理异常: {e}",
                              exc_info=True)
            reason = FailureReason.UNKNOWN
            message = f"探测异常: {e}"

        return ProbeOutcome(
            monitor_id=monitor_id,
            success=False,
            latency=time.monotonic() - started,
            timestamp=started_at,
            reason=reason,
            message=message,
            target=target,
            kind=probe_kind
        )

    async def probe_monitor(self, monitor: Monitor) -> ProbeOutcome:
        """按监控定义执行探测"""
        return await self.probe(monitor.target, monitor.kind, monitor.effective_timeout(),
                                monitor_id=monitor.monitor_id,
                                success_codes=monitor.success_codes)
