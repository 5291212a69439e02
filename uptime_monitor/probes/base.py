"""探测器基类"""

import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, Any, Optional, Tuple

from ..models.monitor import ProbeKind, ProbeOutcome
from ..utils.log_manager import get_logger


class BaseProbe(ABC):
    """探测器抽象基类

    子类负责把所有已知的网络失败映射为 ProbeOutcome，不保存任何状态。
    """

    kind: ProbeKind

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        初始化探测器

        Args:
            config: 探测器配置参数
        """
        self.config = config or {}
        self.logger = get_logger(f'probe.{self.kind.value}')

    @abstractmethod
    async def probe(self, target: str, timeout: float, monitor_id: str = '',
                    success_codes: Optional[Tuple[Tuple[int, int], ...]] = None) -> ProbeOutcome:
        """
        对目标执行一次探测

        Args:
            target: 探测目标
            timeout: 超时时间（秒）
            monitor_id: 所属监控标识
            success_codes: HTTP 成功状态码范围（仅 http 使用）

        Returns:
            ProbeOutcome: 探测结果
        """
        pass

    def _outcome(self, monitor_id: str, target: str, started: float, started_at: datetime,
                 success: bool, reason: Optional[str] = None, message: str = '',
                 status_code: Optional[int] = None) -> ProbeOutcome:
        """按端到端耗时构造探测结果"""
        return ProbeOutcome(
            monitor_id=monitor_id,
            success=success,
            latency=time.monotonic() - started,
            timestamp=started_at,
            reason=None if success else reason,
            message=message,
            target=target,
            kind=self.kind,
            status_code=status_code
        )
