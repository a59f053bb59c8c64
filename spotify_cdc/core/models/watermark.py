"""
Watermark model and CDC value helpers.

CDC values are timestamps (or dates) for most tables and plain integers for
version-number columns. Timestamps are normalized to timezone-aware UTC so
that values read from different backends always compare.
"""

from datetime import date, datetime, time, timezone
from typing import Any, Union

from pydantic import BaseModel, Field, field_validator

CdcValue = Union[datetime, int, float]


def coerce_cdc_value(value: Any) -> CdcValue | None:
    """
    Normalize a raw CDC value into a comparable scalar.

    Args:
        value: datetime, date, ISO-8601 string, int or float

    Returns:
        A UTC datetime, an int/float, or None for empty input

    Raises:
        ValueError: If the value cannot be interpreted

    Examples:
        >>> coerce_cdc_value("2025-01-03")
        datetime.datetime(2025, 1, 3, 0, 0, tzinfo=datetime.timezone.utc)
        >>> coerce_cdc_value(42)
        42
    """
    if value is None:
        return None

    if isinstance(value, bool):
        raise ValueError("boolean is not a valid CDC value")

    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime.combine(value, time.min)
    elif isinstance(value, (int, float)):
        return value
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.lstrip("-").isdigit():
            return int(text)
        try:
            moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValueError(f"CDC value {value!r} is not an ISO-8601 date or timestamp") from e
    else:
        raise ValueError(f"Unsupported CDC value type: {type(value).__name__}")

    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_cdc_value(value: CdcValue | None) -> str | int | float | None:
    """Render a CDC value for the watermark file (ISO-8601 for timestamps)."""
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class Watermark(BaseModel):
    """
    Last successfully processed change marker for one table.

    Attributes:
        table_id: "<schema>.<table>" of the source table
        value: Greatest CDC value merged so far
        last_success_at: When the watermark was last advanced (None when inherited
            from the legacy shared date, which records no success time)
    """

    table_id: str = Field(..., min_length=1)
    value: CdcValue
    last_success_at: datetime | None = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("value", mode="before")
    @classmethod
    def normalize_value(cls, v):
        """Accept ISO strings, dates and naive datetimes."""
        coerced = coerce_cdc_value(v)
        if coerced is None:
            raise ValueError("watermark value must not be empty")
        return coerced

    def to_record(self) -> dict[str, Any]:
        """Serialize into the persisted {"cdc": ..., "last_success_at": ...} shape."""
        return {
            "cdc": format_cdc_value(self.value),
            "last_success_at": self.last_success_at.isoformat() if self.last_success_at else None,
        }

    @classmethod
    def from_record(cls, table_id: str, record: dict[str, Any]) -> "Watermark":
        """Build a watermark from its persisted shape."""
        return cls(
            table_id=table_id,
            value=record.get("cdc"),
            last_success_at=record.get("last_success_at") or None,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "table_id": "silver.DimUser",
                "value": "2025-01-03T00:00:00+00:00",
                "last_success_at": "2025-01-04T02:00:13+00:00"
            }
        }
