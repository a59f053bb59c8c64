"""
Watermark persistence.
"""

from .watermark_store import (
    InMemoryWatermarkStore,
    JsonFileWatermarkStore,
    WatermarkStore,
    check_advance,
)

__all__ = [
    "WatermarkStore",
    "InMemoryWatermarkStore",
    "JsonFileWatermarkStore",
    "check_advance",
]
