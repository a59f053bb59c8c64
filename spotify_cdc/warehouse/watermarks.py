"""
Watermark store backed by the cdc_watermark table.

Keeps watermarks next to the warehouse so several loader hosts share
them. The monotonic check runs under SELECT ... FOR UPDATE, so two
processes advancing the same table serialize on the row lock.
"""

from datetime import datetime

from spotify_cdc.core.models import CdcValue, Watermark, coerce_cdc_value, format_cdc_value
from spotify_cdc.state.watermark_store import WatermarkStore, check_advance

from .connection import DatabaseConnectionPool


def _value_type(value: CdcValue) -> str:
    if isinstance(value, datetime):
        return "timestamp"
    if isinstance(value, int):
        return "integer"
    return "float"


def _decode(cdc_value: str, value_type: str) -> CdcValue:
    if value_type == "integer":
        return int(cdc_value)
    if value_type == "float":
        return float(cdc_value)
    return coerce_cdc_value(cdc_value)


class PostgresWatermarkStore(WatermarkStore):
    """
    Persists one row per table: (table_id, cdc_value, value_type, last_success_at).
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize the store.

        Args:
            pool: Database connection pool
        """
        super().__init__()
        self.pool = pool

    def _to_watermark(self, row: dict) -> Watermark:
        return Watermark(
            table_id=row["table_id"],
            value=_decode(row["cdc_value"], row["value_type"]),
            last_success_at=row["last_success_at"],
        )

    def get(self, table_id: str) -> Watermark | None:
        rows = self.pool.execute_query(
            """
            SELECT table_id, cdc_value, value_type, last_success_at
            FROM cdc_watermark
            WHERE table_id = %s
            """,
            (table_id,),
        )
        return self._to_watermark(rows[0]) if rows else None

    def all(self) -> dict[str, Watermark]:
        rows = self.pool.execute_query(
            """
            SELECT table_id, cdc_value, value_type, last_success_at
            FROM cdc_watermark
            ORDER BY table_id
            """
        )
        return {row["table_id"]: self._to_watermark(row) for row in rows}

    def reset(self, table_id: str) -> bool:
        deleted = self.pool.execute_command(
            "DELETE FROM cdc_watermark WHERE table_id = %s", (table_id,)
        )
        return deleted > 0

    def _advance(self, table_id: str, value: CdcValue) -> Watermark:
        watermark = Watermark(table_id=table_id, value=value)
        params = (
            table_id,
            str(format_cdc_value(value)),
            _value_type(value),
            watermark.last_success_at,
        )

        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO cdc_watermark (table_id, cdc_value, value_type, last_success_at)
                    VALUES (%s, %s, %s, %s)
                    ON CONFLICT (table_id) DO NOTHING
                    RETURNING table_id
                    """,
                    params,
                )
                if cur.fetchone() is not None:
                    conn.commit()
                    return watermark

                cur.execute(
                    """
                    SELECT cdc_value, value_type
                    FROM cdc_watermark
                    WHERE table_id = %s
                    FOR UPDATE
                    """,
                    (table_id,),
                )
                row = cur.fetchone()
                try:
                    check_advance(table_id, _decode(row["cdc_value"], row["value_type"]), value)
                except Exception:
                    conn.rollback()
                    raise

                cur.execute(
                    """
                    UPDATE cdc_watermark
                    SET cdc_value = %s, value_type = %s, last_success_at = %s
                    WHERE table_id = %s
                    """,
                    (params[1], params[2], params[3], table_id),
                )
            conn.commit()
        return watermark
