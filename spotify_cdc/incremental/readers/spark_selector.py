"""
Change selector reading lakehouse (silver layer) tables through Spark.
"""

import re
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any

from pyspark.sql import SparkSession
from pyspark.sql.functions import col, lit

from spotify_cdc.core.models import CdcValue, TableConfig
from spotify_cdc.observability.logger import get_logger

from .base_selector import BaseChangeSelector

logger = get_logger(__name__)


def to_snake_case(name: str) -> str:
    """
    Convert a CamelCase table name to the lakehouse's snake_case.

    Examples:
        >>> to_snake_case("FactStream")
        'fact_stream'
        >>> to_snake_case("DimUser")
        'dim_user'
    """
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


def localize_row(row: dict[str, Any]) -> dict[str, Any]:
    """
    Make the naive datetimes of a collected row aware, in UTC.

    PySpark hands TimestampType values to Python as naive datetimes in the
    local zone of the driver process (not the Spark session zone).
    """
    return {
        key: value.astimezone(timezone.utc)
        if isinstance(value, datetime) and value.tzinfo is None
        else value
        for key, value in row.items()
    }


class SparkChangeSelector(BaseChangeSelector):
    """
    Selects changed rows from Spark tables.

    The filter and sort run in Spark; rows reach the driver one partition
    at a time via toLocalIterator(), which keeps memory bounded on the
    driver. Collected timestamps are naive local times of the driver
    process and are converted to UTC before leaving the selector.
    """

    def __init__(
        self,
        spark: SparkSession,
        catalog: str | None = None,
        snake_case_names: bool = False,
    ):
        """
        Initialize the selector.

        Args:
            spark: Active Spark session
            catalog: Optional catalog prefix (e.g. "spotify" for spotify.silver.dim_user)
            snake_case_names: Map DimUser -> dim_user when resolving table names
        """
        self.spark = spark
        self.catalog = catalog
        self.snake_case_names = snake_case_names

    def table_name(self, table: TableConfig) -> str:
        """Fully qualified Spark table name for a config."""
        name = to_snake_case(table.table) if self.snake_case_names else table.table
        parts = [table.schema_name, name]
        if self.catalog:
            parts.insert(0, self.catalog)
        return ".".join(parts)

    def _fetch(self, table: TableConfig, lower_bound: CdcValue | None) -> Iterator[dict[str, Any]]:
        name = self.table_name(table)
        logger.debug(
            f"Selecting changes from Spark table {name}",
            extra={"table_id": table.table_id, "lower_bound": str(lower_bound)},
        )

        df = self.spark.read.table(name)
        if lower_bound is not None:
            df = df.filter(col(table.cdc_col) > lit(lower_bound))
        df = df.orderBy(col(table.cdc_col).asc_nulls_last())

        for row in df.toLocalIterator():
            yield localize_row(row.asDict(recursive=True))
