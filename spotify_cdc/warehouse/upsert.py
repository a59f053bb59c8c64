"""
Idempotent upsert operations for warehouse tables.

Implements INSERT ... ON CONFLICT (pk) DO UPDATE for reliable, idempotent
writes: replaying a change set leaves the target exactly as one
application did.
"""

from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

import psycopg
from psycopg import sql

from spotify_cdc.core.models import TableConfig
from spotify_cdc.observability.logger import get_logger

from .connection import DatabaseConnectionPool
from .sink import BaseWarehouseSink, SinkTransaction

logger = get_logger(__name__)


def build_upsert_query(table: TableConfig, columns: list[str]) -> sql.Composed:
    """
    Compose a full-row upsert for a target table.

    Every non-key column is overwritten from EXCLUDED; a table made of
    key columns only falls back to DO NOTHING.

    Args:
        table: Config of the table being merged
        columns: Column names present in the rows, in a fixed order

    Returns:
        Composed INSERT ... ON CONFLICT statement
    """
    target = sql.SQL("{}.{}").format(
        sql.Identifier(table.target_schema), sql.Identifier(table.target_name)
    )
    non_key = [c for c in columns if c not in table.primary_key]

    if non_key:
        action = sql.SQL("DO UPDATE SET {}").format(
            sql.SQL(", ").join(
                sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c)) for c in non_key
            )
        )
    else:
        action = sql.SQL("DO NOTHING")

    return sql.SQL(
        "INSERT INTO {target} ({columns}) VALUES ({values}) ON CONFLICT ({keys}) {action}"
    ).format(
        target=target,
        columns=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        values=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
        keys=sql.SQL(", ").join(sql.Identifier(c) for c in table.primary_key),
        action=action,
    )


class _PostgresTransaction(SinkTransaction):
    def __init__(self, conn: psycopg.Connection):
        self.conn = conn

    def upsert(self, table: TableConfig, rows: list[dict[str, Any]]) -> int:
        if not rows:
            return 0

        columns = list(rows[0].keys())
        for row in rows[1:]:
            for column in row:
                if column not in columns:
                    columns.append(column)

        query = build_upsert_query(table, columns)
        data_tuples = [tuple(row.get(c) for c in columns) for row in rows]

        with self.conn.cursor() as cur:
            cur.executemany(query, data_tuples)
        return len(rows)

    def existing_keys(
        self, schema: str, table: str, column: str, values: Iterable[Any]
    ) -> set[Any]:
        wanted = list(values)
        if not wanted:
            return set()

        query = sql.SQL("SELECT DISTINCT {col} AS key FROM {schema}.{table} WHERE {col} = ANY(%s)").format(
            col=sql.Identifier(column),
            schema=sql.Identifier(schema),
            table=sql.Identifier(table),
        )
        with self.conn.cursor() as cur:
            cur.execute(query, (wanted,))
            return {row["key"] for row in cur.fetchall()}


class PostgresWarehouseSink(BaseWarehouseSink):
    """
    Writes merged rows to PostgreSQL warehouse tables.

    One connection and one transaction per table merge. In dry-run mode
    every transaction is rolled back, so a cycle reports what it would
    have written without changing the warehouse.
    """

    def __init__(self, pool: DatabaseConnectionPool, dry_run: bool = False):
        """
        Initialize warehouse sink.

        Args:
            pool: Database connection pool
            dry_run: Roll back instead of committing
        """
        self.pool = pool
        self.dry_run = dry_run

    @contextmanager
    def transaction(self) -> Iterator[SinkTransaction]:
        with self.pool.get_connection() as conn:
            try:
                yield _PostgresTransaction(conn)
            except BaseException:
                conn.rollback()
                raise

            if self.dry_run:
                logger.info("Dry run: rolling back merge transaction")
                conn.rollback()
            else:
                conn.commit()
