"""
Core data models for the incremental CDC loader.

All models use Pydantic for runtime validation and type safety.
"""

from .change_row import ChangeRow
from .cycle_result import CycleResult, TableResult, TableStatus
from .merge_outcome import MergeOutcome, RowRejection
from .table_config import TableConfig
from .watermark import CdcValue, Watermark, coerce_cdc_value, format_cdc_value

__all__ = [
    "TableConfig",
    "Watermark",
    "ChangeRow",
    "RowRejection",
    "MergeOutcome",
    "TableResult",
    "TableStatus",
    "CycleResult",
    "CdcValue",
    "coerce_cdc_value",
    "format_cdc_value",
]
