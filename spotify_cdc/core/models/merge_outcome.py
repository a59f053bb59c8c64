"""
Merge outcome models: per-row rejections and the per-table merge summary.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from .watermark import CdcValue

RejectionRule = Literal[
    "missing_primary_key",
    "missing_cdc_value",
    "missing_reference",
]


class RowRejection(BaseModel):
    """
    A change row the merger refused to apply.

    Rejected rows are quarantined: they are reported, never retried
    automatically, and the watermark still moves past them.

    Attributes:
        table_id: Source table of the row
        primary_key: Key values (None when the key itself was missing)
        cdc_value: CDC value of the row, if it had one
        rule: Machine-readable rejection rule
        reason: Human-readable explanation
        payload: The row's column values
        rejected_at: When the rejection happened
    """

    table_id: str
    primary_key: tuple[Any, ...] | None = None
    cdc_value: CdcValue | None = None
    rule: RejectionRule
    reason: str = Field(..., min_length=1)
    payload: dict[str, Any] = Field(default_factory=dict)
    rejected_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        json_schema_extra = {
            "example": {
                "table_id": "silver.FactStream",
                "primary_key": [5001],
                "cdc_value": "2025-01-03T10:00:00+00:00",
                "rule": "missing_reference",
                "reason": "track_id=999 not found in gold.DimTrack",
                "payload": {"stream_id": 5001, "user_id": 1, "track_id": 999, "date_key": 20250103}
            }
        }


class MergeOutcome(BaseModel):
    """
    Result of applying one table's change set.

    Attributes:
        rows_seen: Change rows consumed from the selector
        rows_applied: Rows upserted into the target
        rows_superseded: Older versions discarded by last-writer-wins
        rejections: Rows refused (malformed or unresolved references)
        max_cdc_value: Greatest CDC value across every row seen
    """

    rows_seen: int = Field(0, ge=0)
    rows_applied: int = Field(0, ge=0)
    rows_superseded: int = Field(0, ge=0)
    rejections: list[RowRejection] = Field(default_factory=list)
    max_cdc_value: CdcValue | None = None

    @property
    def rows_rejected(self) -> int:
        return len(self.rejections)
