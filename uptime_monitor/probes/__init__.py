"""探测器模块"""

from .base import BaseProbe
from .executor import ProbeExecutor
from .factory import ProbeRegistry, probe_registry, register_probe
from .http_probe import HttpProbe
from .ping_probe import PingProbe

__all__ = ['BaseProbe', 'ProbeExecutor', 'ProbeRegistry', 'probe_registry',
           'register_probe', 'HttpProbe', 'PingProbe']
