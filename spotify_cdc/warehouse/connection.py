"""
PostgreSQL connection pool management using psycopg3

One pool serves the change selectors, the merge transactions and the
watermark/quarantine tables. Sessions run in UTC and can carry a
statement_timeout so a hung query surfaces as an infrastructure failure.
"""
import os
import time
from contextlib import contextmanager

from psycopg import OperationalError
from psycopg.rows import dict_row
from psycopg_pool import ConnectionPool

from spotify_cdc.observability.logger import get_logger

logger = get_logger(__name__)


class DatabaseConnectionPool:
    """
    PostgreSQL connection pool manager using psycopg3

    Each concurrently loading table holds up to two connections (the
    streaming read and the merge transaction), so size max_size to at
    least twice the coordinator's worker count.
    """

    def __init__(
        self,
        host: str | None = None,
        port: int | None = None,
        database: str | None = None,
        user: str | None = None,
        password: str | None = None,
        min_size: int = 2,
        max_size: int = 10,
        timeout: float = 30.0,
        statement_timeout_seconds: float | None = None,
    ) -> None:
        """
        Initialize database connection pool

        Args:
            host: Database host (defaults to env var WAREHOUSE_DB_HOST)
            port: Database port (defaults to env var WAREHOUSE_DB_PORT)
            database: Database name (defaults to env var WAREHOUSE_DB_NAME)
            user: Database user (defaults to env var WAREHOUSE_DB_USER)
            password: Database password (defaults to env var WAREHOUSE_DB_PASSWORD)
            min_size: Minimum pool size
            max_size: Maximum pool size
            timeout: Connection timeout in seconds
            statement_timeout_seconds: Server-side limit per statement, None for no limit
        """
        self.host = host or os.getenv("WAREHOUSE_DB_HOST", "localhost")
        self.port = port or int(os.getenv("WAREHOUSE_DB_PORT", "5432"))
        self.database = database or os.getenv("WAREHOUSE_DB_NAME", "spotify_dw")
        self.user = user or os.getenv("WAREHOUSE_DB_USER", "cdc_loader")
        self.password = password or os.getenv("WAREHOUSE_DB_PASSWORD")

        # Security: Require password to be explicitly set
        if not self.password:
            raise ValueError(
                "Database password must be provided. "
                "Set WAREHOUSE_DB_PASSWORD environment variable or pass to constructor."
            )

        self.min_size = min_size
        self.max_size = max_size
        self.timeout = timeout
        self.statement_timeout_seconds = statement_timeout_seconds

        options = "-c timezone=UTC"
        if statement_timeout_seconds:
            options += f" -c statement_timeout={int(statement_timeout_seconds * 1000)}"

        self.conninfo = (
            f"host={self.host} "
            f"port={self.port} "
            f"dbname={self.database} "
            f"user={self.user} "
            f"password={self.password} "
            f"connect_timeout={int(self.timeout)} "
            f"options='{options}'"
        )

        self._pool: ConnectionPool | None = None

    def open(self, max_retries: int = 3, retry_delay: float = 2.0) -> None:
        """
        Open the connection pool with retry logic.

        Args:
            max_retries: Maximum number of connection attempts
            retry_delay: Delay between retries in seconds

        Raises:
            OperationalError: If connection fails after all retries
        """
        if self._pool is not None:
            return

        for attempt in range(1, max_retries + 1):
            pool = ConnectionPool(
                conninfo=self.conninfo,
                min_size=self.min_size,
                max_size=self.max_size,
                timeout=self.timeout,
                kwargs={"row_factory": dict_row},
                open=False,
            )
            try:
                pool.open(wait=True, timeout=self.timeout)
                self._pool = pool
                return
            except OperationalError as e:
                pool.close()
                logger.warning(
                    f"Database connection attempt {attempt}/{max_retries} failed: {e}",
                    extra={"host": self.host, "database": self.database},
                )
                if attempt < max_retries:
                    time.sleep(retry_delay)
                else:
                    raise OperationalError(
                        f"Failed to connect to database after {max_retries} attempts: {e}"
                    ) from e

    def close(self) -> None:
        """Close the connection pool"""
        if self._pool is not None:
            self._pool.close()
            self._pool = None

    @contextmanager
    def get_connection(self):
        """
        Get a connection from the pool

        Yields:
            psycopg.Connection: Database connection (rows come back as dicts)

        Raises:
            RuntimeError: If pool is not open
        """
        if self._pool is None:
            raise RuntimeError("Connection pool is not open. Call open() first.")

        with self._pool.connection() as conn:
            yield conn

    @contextmanager
    def get_cursor(self):
        """
        Get a cursor from a pooled connection

        Yields:
            psycopg.Cursor: Database cursor
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                yield cur

    def execute_query(self, query, params: tuple | dict | None = None) -> list[dict]:
        """
        Execute a SELECT query and return results

        Args:
            query: SQL SELECT query (str or psycopg.sql.Composed)
            params: Query parameters (optional)

        Returns:
            List of dictionaries (one per row)
        """
        with self.get_cursor() as cur:
            cur.execute(query, params)
            return cur.fetchall()

    def execute_command(self, command, params: tuple | dict | None = None) -> int:
        """
        Execute an INSERT/UPDATE/DELETE command

        Args:
            command: SQL command (str or psycopg.sql.Composed)
            params: Command parameters (optional)

        Returns:
            Number of rows affected
        """
        with self.get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(command, params)
                rowcount = cur.rowcount
            conn.commit()
            return rowcount

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
