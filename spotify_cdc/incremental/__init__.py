"""
Incremental (CDC) load processing module.
"""

from .coordinator import LoadCoordinator
from .readers import BaseChangeSelector, InMemoryChangeSelector
from .run_lock import RunLock

__all__ = [
    "LoadCoordinator",
    "RunLock",
    "BaseChangeSelector",
    "InMemoryChangeSelector",
]
