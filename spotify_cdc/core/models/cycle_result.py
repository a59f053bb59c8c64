"""
CycleResult model: the single reporting surface of a load cycle.
"""

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field

from .merge_outcome import RowRejection
from .watermark import CdcValue, format_cdc_value

TableStatus = Literal["succeeded", "failed", "skipped", "cancelled"]


class TableResult(BaseModel):
    """
    Outcome of one table within a cycle.

    Attributes:
        table_id: Source table
        status: "succeeded", "failed", "skipped" or "cancelled"
        rows_selected: Change rows read from the source
        rows_applied: Rows upserted into the warehouse
        rows_superseded: Rows discarded by last-writer-wins
        rows_rejected: Rows quarantined
        rejections: Details of each quarantined row
        previous_watermark: Watermark the selection started from
        new_watermark: Watermark after the cycle (unchanged if not advanced)
        watermark_advanced: Whether the store accepted a new value
        error: Failure message for failed tables
        error_type: Exception class name for failed tables
        skipped_reason: Why a table did not run
        elapsed_seconds: Wall time spent on the table
    """

    table_id: str
    status: TableStatus
    rows_selected: int = 0
    rows_applied: int = 0
    rows_superseded: int = 0
    rows_rejected: int = 0
    rejections: list[RowRejection] = Field(default_factory=list)
    previous_watermark: CdcValue | None = None
    new_watermark: CdcValue | None = None
    watermark_advanced: bool = False
    error: str | None = None
    error_type: str | None = None
    skipped_reason: str | None = None
    elapsed_seconds: float = Field(0.0, ge=0.0)

    @property
    def ok(self) -> bool:
        return self.status == "succeeded"

    def summary(self) -> dict[str, Any]:
        """JSON-safe view for schedulers and monitors."""
        return {
            "table": self.table_id,
            "status": self.status,
            "rows_selected": self.rows_selected,
            "rows_applied": self.rows_applied,
            "rows_superseded": self.rows_superseded,
            "rows_rejected": self.rows_rejected,
            "rejections": [
                {
                    "primary_key": list(r.primary_key) if r.primary_key else None,
                    "rule": r.rule,
                    "reason": r.reason,
                }
                for r in self.rejections
            ],
            "previous_watermark": format_cdc_value(self.previous_watermark),
            "new_watermark": format_cdc_value(self.new_watermark),
            "watermark_advanced": self.watermark_advanced,
            "error": self.error,
            "skipped_reason": self.skipped_reason,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }


class CycleResult(BaseModel):
    """
    Aggregate of per-table outcomes for one incremental cycle.

    Produced fresh each cycle; tables appear in dependency order.
    """

    cycle_id: str
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    tables: list[TableResult] = Field(default_factory=list)
    cancelled: bool = False

    def get(self, table_id: str) -> TableResult | None:
        """Look up a table's result by id."""
        for result in self.tables:
            if result.table_id == table_id:
                return result
        return None

    def by_status(self, status: TableStatus) -> list[TableResult]:
        return [t for t in self.tables if t.status == status]

    @property
    def succeeded(self) -> bool:
        """True when every table succeeded."""
        return bool(self.tables) and all(t.ok for t in self.tables)

    @property
    def rows_applied(self) -> int:
        return sum(t.rows_applied for t in self.tables)

    @property
    def rows_rejected(self) -> int:
        return sum(t.rows_rejected for t in self.tables)

    @property
    def elapsed_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def summary(self) -> dict[str, Any]:
        """
        Structured summary consumable by an external scheduler/monitor.

        Returns:
            Dictionary with cycle totals and one entry per table
        """
        return {
            "cycle_id": self.cycle_id,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
            "succeeded": self.succeeded,
            "cancelled": self.cancelled,
            "rows_applied": self.rows_applied,
            "rows_rejected": self.rows_rejected,
            "tables": [t.summary() for t in self.tables],
        }
