"""
Change selector reading source tables from PostgreSQL.

Uses a server-side (named) cursor so large change sets stream to the
merger in itersize batches instead of being materialized client-side.
"""

import uuid
from collections.abc import Iterator
from typing import Any

import psycopg
from psycopg import sql

from spotify_cdc.core.errors import InfrastructureFailure
from spotify_cdc.core.models import CdcValue, TableConfig
from spotify_cdc.observability.logger import get_logger
from spotify_cdc.warehouse.connection import DatabaseConnectionPool

from .base_selector import BaseChangeSelector

logger = get_logger(__name__)


def build_change_query(table: TableConfig, incremental: bool) -> sql.Composed:
    """
    Compose the selection statement for a table.

    Args:
        table: Table to read
        incremental: Whether to apply the `cdc_col > %s` predicate

    Returns:
        Composed SQL with identifiers safely quoted
    """
    cdc = sql.Identifier(table.cdc_col)
    source = sql.SQL("{}.{}").format(sql.Identifier(table.schema_name), sql.Identifier(table.table))

    if incremental:
        return sql.SQL("SELECT * FROM {source} WHERE {cdc} > %s ORDER BY {cdc} ASC").format(
            source=source, cdc=cdc
        )
    return sql.SQL("SELECT * FROM {source} ORDER BY {cdc} ASC NULLS LAST").format(
        source=source, cdc=cdc
    )


class PostgresChangeSelector(BaseChangeSelector):
    """
    Selects changed rows from PostgreSQL source tables.
    """

    def __init__(self, pool: DatabaseConnectionPool, itersize: int = 1000):
        """
        Initialize the selector.

        Args:
            pool: Database connection pool
            itersize: Rows fetched per round trip from the server-side cursor
        """
        self.pool = pool
        self.itersize = itersize

    def _fetch(self, table: TableConfig, lower_bound: CdcValue | None) -> Iterator[dict[str, Any]]:
        query = build_change_query(table, incremental=lower_bound is not None)
        params = (lower_bound,) if lower_bound is not None else None
        cursor_name = f"cdc_{table.table.lower()}_{uuid.uuid4().hex[:8]}"

        logger.debug(
            f"Selecting changes from {table.table_id}",
            extra={"table_id": table.table_id, "lower_bound": str(lower_bound)},
        )

        try:
            with self.pool.get_connection() as conn:
                with conn.cursor(name=cursor_name) as cur:
                    cur.itersize = self.itersize
                    cur.execute(query, params)
                    for row in cur:
                        yield row
                # read-only transaction; nothing to keep
                conn.rollback()
        except psycopg.OperationalError as e:
            raise InfrastructureFailure(table.table_id, f"change selection failed: {e}") from e
