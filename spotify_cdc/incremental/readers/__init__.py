"""
Change selectors (the read side of an incremental load).

The PostgreSQL and Spark selectors are imported from their modules
directly so that psycopg or pyspark only load when used.
"""

from .base_selector import BaseChangeSelector, effective_watermark
from .memory_selector import InMemoryChangeSelector

__all__ = [
    "BaseChangeSelector",
    "InMemoryChangeSelector",
    "effective_watermark",
]
