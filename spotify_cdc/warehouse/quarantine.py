"""
Quarantine table for change rows the merger rejected.

Rejected rows are kept for review, never retried automatically: the
watermark has already moved past them.
"""

import json
from typing import Any

from spotify_cdc.core.models import RowRejection, format_cdc_value

from .connection import DatabaseConnectionPool


class PostgresQuarantineWriter:
    """
    Handles writing rejected change rows to the cdc_quarantine table.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        """
        Initialize quarantine writer.

        Args:
            pool: Database connection pool
        """
        self.pool = pool

    def quarantine_batch(self, cycle_id: str, rejections: list[RowRejection]) -> int:
        """
        Insert a batch of rejections into quarantine.

        Args:
            cycle_id: Cycle that produced the rejections
            rejections: Rows refused by the merger

        Returns:
            Number of rows quarantined
        """
        if not rejections:
            return 0

        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                query = """
                    INSERT INTO cdc_quarantine (
                        cycle_id, table_id, primary_key, cdc_value, rule,
                        reason, raw_payload, rejected_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                """

                data_tuples = [
                    (
                        cycle_id,
                        r.table_id,
                        json.dumps(list(r.primary_key), default=str) if r.primary_key else None,
                        self._format(r.cdc_value),
                        r.rule,
                        r.reason,
                        json.dumps(r.payload, default=str),
                        r.rejected_at,
                    )
                    for r in rejections
                ]

                cur.executemany(query, data_tuples)
            conn.commit()

        return len(rejections)

    def get_quarantine_stats(self, table_id: str | None = None) -> dict[str, Any]:
        """
        Get quarantine statistics.

        Args:
            table_id: Optional source table to filter by

        Returns:
            Dictionary with quarantine statistics
        """
        query = """
            SELECT
                COUNT(*) as total_quarantined,
                COUNT(*) FILTER (WHERE reviewed = FALSE) as unreviewed,
                COUNT(*) FILTER (WHERE rule = 'missing_reference') as missing_reference
            FROM cdc_quarantine
        """
        params: tuple = ()
        if table_id:
            query += " WHERE table_id = %s"
            params = (table_id,)

        result = self.pool.execute_query(query, params)
        return result[0] if result else {}

    def list_unreviewed(self, table_id: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        """
        List quarantined rows awaiting review, oldest first.

        Args:
            table_id: Optional source table to filter by
            limit: Maximum rows returned
        """
        if table_id:
            query = """
                SELECT * FROM cdc_quarantine
                WHERE reviewed = FALSE AND table_id = %s
                ORDER BY quarantine_id
                LIMIT %s
            """
            params: tuple = (table_id, limit)
        else:
            query = """
                SELECT * FROM cdc_quarantine
                WHERE reviewed = FALSE
                ORDER BY quarantine_id
                LIMIT %s
            """
            params = (limit,)
        return self.pool.execute_query(query, params)

    def mark_reviewed(self, quarantine_id: int) -> None:
        """
        Mark a quarantine record as reviewed.

        Args:
            quarantine_id: The quarantine record ID
        """
        query = """
            UPDATE cdc_quarantine
            SET reviewed = TRUE
            WHERE quarantine_id = %s
        """

        self.pool.execute_command(query, (quarantine_id,))

    @staticmethod
    def _format(value) -> str | None:
        formatted = format_cdc_value(value)
        return None if formatted is None else str(formatted)
