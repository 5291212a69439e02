"""探测器注册表"""

from typing import Dict, Type, Any, Optional

from .base import BaseProbe
from ..models.monitor import ProbeKind
from ..utils.exceptions import ProbeError, ErrorCode


class ProbeRegistry:
    """探测器注册表，按探测类型创建探测器实例"""

    def __init__(self):
        """初始化注册表"""
        self._probes: Dict[ProbeKind, Type[BaseProbe]] = {}

    def register_probe(self, kind: ProbeKind, probe_class: Type[BaseProbe]):
        """
        注册探测器类

        Args:
            kind: 探测类型
            probe_class: 探测器类

        Raises:
            ProbeError: 注册失败
        """
        if not issubclass(probe_class, BaseProbe):
            raise ProbeError(f"探测器类 {probe_class.__name__} 必须继承自 BaseProbe")

        if kind in self._probes:
            raise ProbeError(f"探测类型 '{kind.value}' 已经注册了探测器", probe_kind=kind.value)

        probe_class.kind = kind
        self._probes[kind] = probe_class

    def create_probe(self, kind: ProbeKind, config: Optional[Dict[str, Any]] = None) -> BaseProbe:
        """
        创建探测器实例

        Raises:
            ProbeError: 探测类型不支持
        """
        if kind not in self._probes:
            raise ProbeError(f"不支持的探测类型: '{kind.value}'",
                             error_code=ErrorCode.PROBE_NOT_SUPPORTED, probe_kind=kind.value)

        return self._probes[kind](config)

    def get_supported_kinds(self) -> list:
        """获取支持的探测类型列表"""
        return [kind.value for kind in self._probes]


# 全局注册表实例
probe_registry = ProbeRegistry()


def register_probe(kind: str):
    """
    装饰器：注册探测器类

    Args:
        kind: 探测类型名称
    """
    def decorator(probe_class: Type[BaseProbe]):
        probe_registry.register_probe(ProbeKind(kind), probe_class)
        return probe_class

    return decorator
