"""
Pytest configuration and fixtures for spotify-cdc-loader tests

This module provides shared fixtures for unit and integration tests.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Generator

import psycopg
import pytest
from pyspark.sql import SparkSession
from testcontainers.postgres import PostgresContainer

from spotify_cdc.core.config import TableConfigBuilder
from spotify_cdc.incremental.readers import InMemoryChangeSelector
from spotify_cdc.state.watermark_store import InMemoryWatermarkStore
from spotify_cdc.warehouse.connection import DatabaseConnectionPool
from spotify_cdc.warehouse.sink import InMemoryWarehouse

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def _ts(day: int, hour: int = 0, minute: int = 0) -> datetime:
    """UTC timestamp on day N of January 2025."""
    return BASE_TIME + timedelta(days=day - 1, hours=hour, minutes=minute)


# =======================
# PYTEST CONFIGURATION
# =======================

def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line(
        "markers", "unit: Unit tests that don't require external services"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests that require Docker containers"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds to run"
    )


# =======================
# IN-MEMORY FIXTURES
# =======================

@pytest.fixture(scope="session")
def ts():
    """Factory for UTC timestamps: ts(day, hour=0, minute=0) in January 2025."""
    return _ts


@pytest.fixture
def star_tables():
    """The five Spotify tables in configuration order."""
    return TableConfigBuilder().add_star_schema().build()


@pytest.fixture
def warehouse() -> InMemoryWarehouse:
    """Empty in-memory warehouse (sources and targets)."""
    return InMemoryWarehouse()


@pytest.fixture
def selector(warehouse) -> InMemoryChangeSelector:
    """Selector reading the warehouse fixture's source tables."""
    return InMemoryChangeSelector(warehouse.sources)


@pytest.fixture
def watermark_store() -> InMemoryWatermarkStore:
    return InMemoryWatermarkStore()


@pytest.fixture
def seeded_warehouse(warehouse, ts) -> InMemoryWarehouse:
    """
    Warehouse with one consistent day of Spotify source data.

    Two users, two artists, three tracks, two dates and four streams, all
    with valid references.
    """
    warehouse.add_source_rows("silver.DimUser", [
        {"user_id": 1, "user_name": "ana", "country": "PT", "subscription_type": "free", "updated_at": ts(1, 8)},
        {"user_id": 2, "user_name": "bo", "country": "SE", "subscription_type": "premium", "updated_at": ts(1, 9)},
    ])
    warehouse.add_source_rows("silver.DimArtist", [
        {"artist_id": 10, "artist_name": "Nightcrawl", "genre": "techno", "updated_at": ts(1, 7)},
        {"artist_id": 11, "artist_name": "Lumen", "genre": "jazz", "updated_at": ts(1, 7, 30)},
    ])
    warehouse.add_source_rows("silver.DimTrack", [
        {"track_id": 100, "track_name": "Pulse", "artist_id": 10, "duration_sec": 240, "updated_at": ts(1, 10)},
        {"track_id": 101, "track_name": "Drift", "artist_id": 10, "duration_sec": 301, "updated_at": ts(1, 10, 5)},
        {"track_id": 102, "track_name": "Blue Hour", "artist_id": 11, "duration_sec": 188, "updated_at": ts(1, 10, 10)},
    ])
    warehouse.add_source_rows("silver.DimDate", [
        {"date_key": 20250101, "date": ts(1), "day": 1, "month": 1, "year": 2025, "weekday": "Wednesday"},
        {"date_key": 20250102, "date": ts(2), "day": 2, "month": 1, "year": 2025, "weekday": "Thursday"},
    ])
    warehouse.add_source_rows("silver.FactStream", [
        {"stream_id": 5000, "user_id": 1, "track_id": 100, "date_key": 20250101,
         "listen_duration": 200, "device_type": "mobile", "stream_timestamp": ts(1, 12)},
        {"stream_id": 5001, "user_id": 2, "track_id": 101, "date_key": 20250101,
         "listen_duration": 301, "device_type": "desktop", "stream_timestamp": ts(1, 13)},
        {"stream_id": 5002, "user_id": 1, "track_id": 102, "date_key": 20250102,
         "listen_duration": 90, "device_type": "web", "stream_timestamp": ts(2, 9)},
        {"stream_id": 5003, "user_id": 2, "track_id": 100, "date_key": 20250102,
         "listen_duration": 240, "device_type": "mobile", "stream_timestamp": ts(2, 10)},
    ])
    return warehouse


# =======================
# SPARK FIXTURES
# =======================

@pytest.fixture(scope="session")
def spark_session() -> Generator[SparkSession, None, None]:
    """
    Create a Spark session for testing with local mode

    Yields:
        SparkSession configured for local testing
    """
    spark = (
        SparkSession.builder
        .appName("spotify-cdc-test")
        .master("local[2]")
        .config("spark.sql.shuffle.partitions", "2")
        .config("spark.sql.session.timeZone", "UTC")
        .config("spark.driver.memory", "1g")
        .config("spark.ui.enabled", "false")  # Disable UI for tests
        .config("spark.sql.warehouse.dir", "/tmp/spotify-cdc-spark-warehouse")
        .getOrCreate()
    )

    # Set log level to WARN to reduce test output noise
    spark.sparkContext.setLogLevel("WARN")

    yield spark

    # Cleanup
    spark.stop()


# =======================
# DATABASE FIXTURES (Testcontainers)
# =======================

@pytest.fixture(scope="session")
def postgres_container() -> Generator[PostgresContainer, None, None]:
    """
    Start PostgreSQL container for integration tests

    Yields:
        PostgresContainer instance with initialized database
    """
    with PostgresContainer(
        image="postgres:16.2-alpine",
        username="test_pipeline",
        password="test_password",
        dbname="test_datawarehouse",
        driver=None,
    ) as postgres:
        # Run init script
        init_sql_path = os.path.join(
            os.path.dirname(os.path.dirname(__file__)),
            "docker",
            "init-db.sql"
        )

        with open(init_sql_path, 'r') as f:
            init_sql = f.read()

        conn_url = postgres.get_connection_url()
        with psycopg.connect(conn_url) as conn:
            with conn.cursor() as cur:
                cur.execute(init_sql)
            conn.commit()

        yield postgres


@pytest.fixture(scope="function")
def db_connection(postgres_container) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a database connection for a single test

    Yields:
        psycopg Connection object
    """
    conn_url = postgres_container.get_connection_url()
    with psycopg.connect(conn_url) as conn:
        yield conn
        # Rollback any uncommitted changes after test
        conn.rollback()


@pytest.fixture(scope="function")
def clean_db(db_connection) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a clean database by truncating all tables before each test

    Yields:
        psycopg Connection object with clean database
    """
    with db_connection.cursor() as cur:
        for schema in ("silver", "gold"):
            for table in ("FactStream", "DimUser", "DimArtist", "DimTrack", "DimDate"):
                cur.execute(f'TRUNCATE TABLE {schema}."{table}"')
        cur.execute("TRUNCATE TABLE cdc_quarantine RESTART IDENTITY")
        cur.execute("TRUNCATE TABLE cdc_watermark")
        db_connection.commit()

    yield db_connection


@pytest.fixture(scope="function")
def pg_pool(postgres_container, clean_db) -> Generator[DatabaseConnectionPool, None, None]:
    """
    Open connection pool against the test container (database cleaned first)

    Yields:
        DatabaseConnectionPool
    """
    pool = DatabaseConnectionPool(
        host=postgres_container.get_container_host_ip(),
        port=int(postgres_container.get_exposed_port(5432)),
        database="test_datawarehouse",
        user="test_pipeline",
        password="test_password",
        min_size=1,
        max_size=8,
    )
    pool.open()
    yield pool
    pool.close()


# =======================
# CONFIGURATION FIXTURES
# =======================

@pytest.fixture(scope="session")
def test_env_vars():
    """
    Set test environment variables

    This fixture loads test.env and sets environment variables
    """
    from dotenv import load_dotenv

    env_path = os.path.join(
        os.path.dirname(os.path.dirname(__file__)),
        "config",
        "test.env"
    )

    if os.path.exists(env_path):
        load_dotenv(env_path, override=True)
