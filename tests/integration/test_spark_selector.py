"""
Integration tests for SparkChangeSelector using a local Spark session.

Source tables are registered as global temp views, so they resolve as
global_temp.<name> like any schema-qualified lakehouse table.
"""

import pytest

from spotify_cdc.core.models import TableConfig, Watermark
from spotify_cdc.incremental.readers.spark_selector import SparkChangeSelector

pytestmark = [pytest.mark.integration, pytest.mark.slow]


@pytest.fixture
def user_view(spark_session, ts):
    df = spark_session.createDataFrame(
        [
            (3, "cy", "BR", ts(3)),
            (1, "ana", "PT", ts(1)),
            (9, "ghost", None, None),
            (2, "bo", "SE", ts(2)),
        ],
        "user_id INT, user_name STRING, country STRING, updated_at TIMESTAMP",
    )
    df.createOrReplaceGlobalTempView("DimUser")
    return df


@pytest.fixture
def users():
    return TableConfig(table="DimUser", schema="global_temp")


class TestSparkChangeSelector:
    """Tests for selecting changes through Spark"""

    def test_full_load_sorted_nulls_last(self, spark_session, user_view, users):
        rows = list(SparkChangeSelector(spark_session).select(users, None))

        assert [r.primary_key for r in rows] == [(1,), (2,), (3,), (9,)]
        assert rows[0].data["user_name"] == "ana"
        assert rows[-1].cdc_value is None

    def test_filter_strictly_after_watermark(self, spark_session, user_view, users, ts):
        watermark = Watermark(table_id=users.table_id, value=ts(2))
        rows = list(SparkChangeSelector(spark_session).select(users, watermark))

        assert [r.primary_key for r in rows] == [(3,)]

    def test_timestamps_come_back_in_utc(self, spark_session, user_view, users, ts):
        rows = list(SparkChangeSelector(spark_session).select(users, None))

        assert rows[2].cdc_value == ts(3)
        assert rows[2].cdc_value.utcoffset().total_seconds() == 0

    def test_snake_case_resolution(self, spark_session, ts):
        spark_session.createDataFrame(
            [(5000, 1, 100, 20250101, ts(1, 12))],
            "stream_id BIGINT, user_id INT, track_id INT, date_key INT, stream_timestamp TIMESTAMP",
        ).createOrReplaceGlobalTempView("fact_stream")

        table = TableConfig(table="FactStream", schema="global_temp")
        selector = SparkChangeSelector(spark_session, snake_case_names=True)

        assert selector.table_name(table) == "global_temp.fact_stream"
        assert [r.primary_key for r in selector.select(table, None)] == [(5000,)]

    def test_catalog_prefix(self, spark_session):
        selector = SparkChangeSelector(spark_session, catalog="spotify", snake_case_names=True)
        assert selector.table_name(TableConfig(table="DimUser")) == "spotify.silver.dim_user"
