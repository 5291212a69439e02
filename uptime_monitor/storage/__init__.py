"""持久化模块"""

from .gateway import PersistenceGateway
from .json_store import JsonFileStore
from .memory_store import MemoryStore

__all__ = ['PersistenceGateway', 'MemoryStore', 'JsonFileStore']
