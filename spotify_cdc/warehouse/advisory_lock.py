"""
PostgreSQL advisory lock used as the cross-process run guard.

Every loader sharing the warehouse (other hosts included) sees the same
lock, so two cycles over one table set cannot race on cdc_watermark.
"""
from contextlib import contextmanager
from collections.abc import Iterator

from spotify_cdc.core.errors import CycleInProgressError
from spotify_cdc.observability.logger import get_logger
from spotify_cdc.warehouse.connection import DatabaseConnectionPool

logger = get_logger(__name__)

LOCK_NAMESPACE = "spotify_cdc:"


class PostgresAdvisoryGuard:
    """
    Session-level pg_try_advisory_lock keyed by the table set.

    One pooled connection is held for the whole cycle; the lock goes away
    with the session if the process dies.
    """

    def __init__(self, pool: DatabaseConnectionPool):
        self.pool = pool

    @contextmanager
    def hold(self, key: str) -> Iterator[str]:
        """
        Raises:
            CycleInProgressError: If another session holds the lock
        """
        lock_name = LOCK_NAMESPACE + key

        with self.pool.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT pg_try_advisory_lock(hashtext(%s)) AS acquired", (lock_name,)
                )
                acquired = cur.fetchone()["acquired"]
            conn.commit()

            if not acquired:
                raise CycleInProgressError(key)

            logger.debug("Acquired advisory run lock", extra={"lock_key": key})
            try:
                yield key
            finally:
                with conn.cursor() as cur:
                    cur.execute("SELECT pg_advisory_unlock(hashtext(%s))", (lock_name,))
                conn.commit()
