"""
TableConfig model describing one source table to load incrementally.
"""

from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from spotify_cdc.core import catalog
from spotify_cdc.utils.validation import sanitize_sql_identifier

from .watermark import CdcValue, coerce_cdc_value


class TableConfig(BaseModel):
    """
    One source table and how its changes reach the warehouse.

    Immutable once loaded for a cycle. Fields left out fall back to the
    star-schema catalog for the five Spotify tables.

    Attributes:
        schema_name: Source schema (alias "schema")
        table: Source table name, also the node name in the dependency graph
        cdc_col: Column whose value orders and bounds changes
        primary_key: Business key column(s)
        from_date: Optional seed watermark used when none is stored
        initial_load: Ignore any watermark and select every row
        depends_on: Table names that must be merged first
        references: Foreign key column -> referenced dimension table name
        target_schema: Warehouse schema receiving the upserts
        target_table: Warehouse table name (defaults to the source name)
    """

    schema_name: str = Field(..., alias="schema", min_length=1)
    table: str = Field(..., min_length=1)
    cdc_col: str = Field(..., min_length=1)
    primary_key: tuple[str, ...] = Field(..., min_length=1)
    from_date: CdcValue | None = None
    initial_load: bool = False
    depends_on: tuple[str, ...] = ()
    references: dict[str, str] = Field(default_factory=dict)
    target_schema: str = catalog.DEFAULT_TARGET_SCHEMA
    target_table: str | None = None

    @model_validator(mode="before")
    @classmethod
    def apply_catalog_defaults(cls, data: Any) -> Any:
        """Fill primary key, cdc column, dependencies and references from the catalog."""
        if not isinstance(data, dict):
            return data

        data = dict(data)
        if "schema" not in data and "schema_name" not in data:
            data["schema"] = catalog.DEFAULT_SOURCE_SCHEMA

        entry = catalog.lookup(data.get("table", ""))
        if entry is None:
            return data

        if not data.get("primary_key"):
            data["primary_key"] = entry["primary_key"]
        if not data.get("cdc_col"):
            data["cdc_col"] = entry["cdc_col"]
        if data.get("depends_on") is None:
            data["depends_on"] = entry["depends_on"]
        if data.get("references") is None:
            data["references"] = dict(entry["references"])
        return data

    @field_validator("primary_key", "depends_on", mode="before")
    @classmethod
    def listify(cls, v):
        """Allow a single column name where a list is expected."""
        if isinstance(v, str):
            return (v,)
        return v

    @field_validator("from_date", mode="before")
    @classmethod
    def parse_from_date(cls, v):
        """Empty strings mean "no seed", as in hand-edited loop inputs."""
        return coerce_cdc_value(v)

    @model_validator(mode="after")
    def check_identifiers(self) -> "TableConfig":
        """Every identifier is composed into SQL, so validate them all."""
        sanitize_sql_identifier(self.schema_name, "schema")
        sanitize_sql_identifier(self.table, "table")
        sanitize_sql_identifier(self.cdc_col, "cdc_col")
        sanitize_sql_identifier(self.target_schema, "target_schema")
        if self.target_table is not None:
            sanitize_sql_identifier(self.target_table, "target_table")
        for column in self.primary_key:
            sanitize_sql_identifier(column, "primary_key")
        for column in self.references:
            sanitize_sql_identifier(column, "references")
        if self.table in self.depends_on:
            raise ValueError(f"table '{self.table}' cannot depend on itself")
        missing = set(self.references.values()) - set(self.depends_on)
        if missing:
            raise ValueError(
                f"referenced tables {sorted(missing)} must also be listed in depends_on"
            )
        return self

    @property
    def table_id(self) -> str:
        """Identifier used for watermarks and results."""
        return f"{self.schema_name}.{self.table}"

    @property
    def target_name(self) -> str:
        return self.target_table or self.table

    @property
    def target_id(self) -> str:
        return f"{self.target_schema}.{self.target_name}"

    class Config:
        frozen = True
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "schema": "silver",
                "table": "FactStream",
                "cdc_col": "stream_timestamp",
                "primary_key": ["stream_id"],
                "from_date": "2025-01-01",
                "depends_on": ["DimUser", "DimTrack", "DimDate"],
                "references": {
                    "user_id": "DimUser",
                    "track_id": "DimTrack",
                    "date_key": "DimDate"
                }
            }
        }
