"""
ChangeRow model representing one changed source row (ephemeral).
"""

from typing import Any

from pydantic import BaseModel

from .table_config import TableConfig
from .watermark import CdcValue, coerce_cdc_value


class ChangeRow(BaseModel):
    """
    A changed source row on its way from the selector to the merger.

    Note: ChangeRow only lives for the duration of a merge; nothing about
    it is persisted apart from the upserted column values.

    Attributes:
        table_id: Source table the row came from
        data: Column name -> value, exactly as selected
        primary_key: Business key values, None if any key column is NULL
        cdc_value: Normalized CDC value, None if missing or unparseable
    """

    table_id: str
    data: dict[str, Any]
    primary_key: tuple[Any, ...] | None = None
    cdc_value: CdcValue | None = None

    @classmethod
    def from_record(cls, table: TableConfig, record: dict[str, Any]) -> "ChangeRow":
        """
        Build a ChangeRow from a raw column mapping.

        Args:
            table: Config of the table the record belongs to
            record: Column name -> value

        Returns:
            ChangeRow with key and CDC value extracted
        """
        key_values = tuple(record.get(column) for column in table.primary_key)
        primary_key = None if any(v is None for v in key_values) else key_values

        try:
            cdc_value = coerce_cdc_value(record.get(table.cdc_col))
        except ValueError:
            cdc_value = None

        return cls(
            table_id=table.table_id,
            data=dict(record),
            primary_key=primary_key,
            cdc_value=cdc_value,
        )

    class Config:
        json_schema_extra = {
            "example": {
                "table_id": "silver.DimUser",
                "data": {
                    "user_id": 17,
                    "user_name": "ana",
                    "country": "PT",
                    "subscription_type": "premium",
                    "updated_at": "2025-01-02T08:30:00"
                },
                "primary_key": [17],
                "cdc_value": "2025-01-02T08:30:00+00:00"
            }
        }
