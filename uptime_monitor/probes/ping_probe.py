"""Ping(ICMP) 探测器"""

import asyncio
import functools
import socket
import time
from concurrent.futures import Executor
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

import ping3

from .base import BaseProbe
from .factory import register_probe
from ..models.monitor import FailureReason, ProbeOutcome


@register_probe('ping')
class PingProbe(BaseProbe):
    """Ping 探测器

    先解析主机名（失败记为 unresolvable），再发送 ``count`` 个回显请求，
    只要收到一个回复即为成功。ping3 是阻塞调用，放在线程池中执行。
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.count = max(int(self.config.get('ping_count', 1)), 1)
        self.thread_pool: Optional[Executor] = self.config.get('thread_pool')

    async def _resolve(self, host: str, timeout: float) -> str:
        """解析主机地址"""
        loop = asyncio.get_running_loop()
        infos = await asyncio.wait_for(
            loop.getaddrinfo(host, None, family=socket.AF_INET, type=socket.SOCK_STREAM),
            timeout
        )
        if not infos:
            raise socket.gaierror(f"无法解析主机: {host}")
        return infos[0][4][0]

    async def probe(self, target: str, timeout: float, monitor_id: str = '',
                    success_codes: Optional[Tuple[Tuple[int, int], ...]] = None) -> ProbeOutcome:
        started = time.monotonic()
        started_at = datetime.now()

        try:
            address = await self._resolve(target, timeout)
        except (socket.gaierror, asyncio.TimeoutError, UnicodeError) as e:
            self.logger.debug(f"监控 {monitor_id} 主机名解析失败: {target} ({e})")
            return self._outcome(monitor_id, target, started, started_at, False,
                                 FailureReason.UNRESOLVABLE, f"主机名解析失败: {e}")

        loop = asyncio.get_running_loop()
        errors = []
        for sequence in range(self.count):
            remaining = timeout - (time.monotonic() - started)
            if remaining <= 0:
                break
            per_attempt = remaining / (self.count - sequence)

            delay = await loop.run_in_executor(
                self.thread_pool,
                functools.partial(ping3.ping, address, timeout=per_attempt, unit='s', seq=sequence)
            )

            if delay is None:
                self.logger.debug(f"监控 {monitor_id} Ping 超时: {target} seq={sequence}")
                continue
            if delay is False:
                errors.append(f"seq={sequence} 发送失败")
                continue

            return self._outcome(monitor_id, target, started, started_at, True,
                                 message=f"Ping 回复来自 {address}: rtt={delay * 1000:.1f}ms")

        if errors and len(errors) == self.count:
            return self._outcome(monitor_id, target, started, started_at, False,
                                 FailureReason.UNKNOWN, f"Ping 执行出错: {'; '.join(errors)}")

        return self._outcome(monitor_id, target, started, started_at, False,
                             FailureReason.TIMEOUT, f"{timeout:.1f}s 内没有收到 Ping 回复")
