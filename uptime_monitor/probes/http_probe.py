"""HTTP(S) 探测器"""

import asyncio
import errno
import socket
import time
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

import aiohttp

from .base import BaseProbe
from .factory import register_probe
from ..models.monitor import (FailureReason, ProbeOutcome, DEFAULT_SUCCESS_CODES,
                              is_success_status, parse_status_ranges)

DNS_ERRNOS = {
    getattr(socket, name) for name in ('EAI_NONAME', 'EAI_AGAIN', 'EAI_FAIL', 'EAI_NODATA')
    if hasattr(socket, name)
}


def classify_connector_error(error: aiohttp.ClientConnectorError) -> str:
    """
    把连接阶段的异常映射为失败原因

    Args:
        error: aiohttp 连接异常

    Returns:
        str: dns-failure / connection-refused / timeout / unknown
    """
    dns_error_class = getattr(aiohttp, 'ClientConnectorDNSError', None)
    if dns_error_class is not None and isinstance(error, dns_error_class):
        return FailureReason.DNS_FAILURE

    os_error = getattr(error, 'os_error', None)
    if isinstance(os_error, socket.gaierror) or getattr(os_error, 'errno', None) in DNS_ERRNOS:
        return FailureReason.DNS_FAILURE

    if isinstance(os_error, ConnectionRefusedError) or \
            getattr(os_error, 'errno', None) == errno.ECONNREFUSED:
        return FailureReason.CONNECTION_REFUSED

    # 多地址连接失败时 aiohttp 只给出汇总信息
    if 'connection refused' in str(error).lower():
        return FailureReason.CONNECTION_REFUSED

    if isinstance(os_error, (TimeoutError, socket.timeout)):
        return FailureReason.TIMEOUT

    return FailureReason.UNKNOWN


@register_probe('http')
class HttpProbe(BaseProbe):
    """HTTP 探测器

    在超时时间内完成响应且状态码落在成功范围内即为成功，
    其他状态码记为 http-error:<code>。
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.success_codes = parse_status_ranges(self.config.get('success_codes')) \
            if self.config.get('success_codes') is not None else DEFAULT_SUCCESS_CODES
        self.method = self.config.get('method', 'GET').upper()
        self.headers = {'User-Agent': self.config.get('user_agent', 'uptime-monitor/1.0')}
        self.verify_ssl = self.config.get('verify_ssl', True)

    async def probe(self, target: str, timeout: float, monitor_id: str = '',
                    success_codes: Optional[Tuple[Tuple[int, int], ...]] = None) -> ProbeOutcome:
        ranges = success_codes or self.success_codes
        started = time.monotonic()
        started_at = datetime.now()

        try:
            client_timeout = aiohttp.ClientTimeout(total=timeout)
            connector = aiohttp.TCPConnector(ssl=bool(self.verify_ssl))
            async with aiohttp.ClientSession(timeout=client_timeout, connector=connector,
                                             headers=self.headers) as session:
                async with session.request(self.method, target) as response:
                    status_code = response.status
                    # 读完响应体才算完成
                    await response.read()

        except asyncio.TimeoutError:
            self.logger.debug(f"监控 {monitor_id} HTTP请求超时: {target}")
            return self._outcome(monitor_id, target, started, started_at, False,
                                 FailureReason.TIMEOUT, f"HTTP请求超时 ({timeout:.1f}s)")
        except aiohttp.ClientConnectorError as e:
            reason = classify_connector_error(e)
            self.logger.debug(f"监控 {monitor_id} HTTP连接失败 ({reason}): {e}")
            return self._outcome(monitor_id, target, started, started_at, False,
                                 reason, f"HTTP连接失败: {e}")
        except aiohttp.InvalidURL as e:
            return self._outcome(monitor_id, target, started, started_at, False,
                                 FailureReason.UNKNOWN, f"URL无效: {e}")
        except aiohttp.ClientError as e:
            return self._outcome(monitor_id, target, started, started_at, False,
                                 FailureReason.UNKNOWN, f"HTTP客户端错误: {e}")

        if is_success_status(status_code, ranges):
            return self._outcome(monitor_id, target, started, started_at, True,
                                 message=f"HTTP {status_code}", status_code=status_code)

        return self._outcome(monitor_id, target, started, started_at, False,
                             FailureReason.http_error(status_code),
                             f"HTTP状态码不在成功范围内: {status_code}",
                             status_code=status_code)
