"""
Unit tests for change selection (in-memory selector and watermark precedence).
"""

import time
from datetime import datetime, timezone

import pytest

from spotify_cdc.core.errors import InfrastructureFailure
from spotify_cdc.core.models import TableConfig, Watermark
from spotify_cdc.incremental.readers import InMemoryChangeSelector, effective_watermark
from spotify_cdc.incremental.readers.spark_selector import localize_row, to_snake_case

UTC = timezone.utc


@pytest.fixture
def users():
    return TableConfig(table="DimUser")


class TestEffectiveWatermark:
    """Tests for the watermark precedence rules"""

    def test_nothing_stored_and_no_seed(self, users):
        assert effective_watermark(users, None) is None

    def test_stored_wins_over_seed(self, ts):
        table = TableConfig(table="DimUser", from_date="2025-01-01")
        stored = Watermark(table_id=table.table_id, value=ts(3))
        assert effective_watermark(table, stored) is stored

    def test_seed_used_when_nothing_stored(self, ts):
        table = TableConfig(table="DimUser", from_date="2025-01-02")
        assert effective_watermark(table, None).value == ts(2)

    def test_initial_load_ignores_everything(self, ts):
        table = TableConfig(table="DimUser", from_date="2025-01-02", initial_load=True)
        stored = Watermark(table_id=table.table_id, value=ts(3))
        assert effective_watermark(table, stored) is None


class TestInMemoryChangeSelector:
    """Tests for InMemoryChangeSelector"""

    def test_strictly_greater_than_watermark(self, users, ts):
        selector = InMemoryChangeSelector({"silver.DimUser": [
            {"user_id": 1, "updated_at": ts(1)},
            {"user_id": 2, "updated_at": ts(2)},
            {"user_id": 3, "updated_at": ts(3)},
        ]})
        watermark = Watermark(table_id=users.table_id, value=ts(2))
        rows = list(selector.select(users, watermark))
        assert [r.primary_key for r in rows] == [(3,)]

    def test_ascending_cdc_order_with_nulls_last_on_full_load(self, users, ts):
        selector = InMemoryChangeSelector({"silver.DimUser": [
            {"user_id": 3, "updated_at": ts(3)},
            {"user_id": 9, "updated_at": None},
            {"user_id": 1, "updated_at": ts(1)},
            {"user_id": 2, "updated_at": ts(1)},
        ]})
        rows = list(selector.select(users, None))
        assert [r.primary_key for r in rows] == [(1,), (2,), (3,), (9,)]
        assert rows[-1].cdc_value is None

    def test_null_cdc_rows_never_match_a_watermark(self, users, ts):
        selector = InMemoryChangeSelector({"silver.DimUser": [
            {"user_id": 9, "updated_at": None},
        ]})
        watermark = Watermark(table_id=users.table_id, value=ts(1))
        assert list(selector.select(users, watermark)) == []

    def test_selection_is_restartable(self, users, ts):
        source = {"silver.DimUser": [{"user_id": 1, "updated_at": ts(1)}]}
        selector = InMemoryChangeSelector(source)
        first = selector.select(users, None)
        next(first)
        first.close()
        source["silver.DimUser"].append({"user_id": 2, "updated_at": ts(2)})
        assert len(list(selector.select(users, None))) == 2

    def test_missing_source_table(self, users):
        with pytest.raises(InfrastructureFailure):
            list(InMemoryChangeSelector({}).select(users, None))

    def test_string_timestamps_compare_with_aware_watermark(self, users):
        selector = InMemoryChangeSelector({"silver.DimUser": [
            {"user_id": 1, "updated_at": "2025-01-01T10:00:00"},
            {"user_id": 2, "updated_at": "2025-01-03T10:00:00"},
        ]})
        watermark = Watermark(table_id=users.table_id, value=datetime(2025, 1, 2, tzinfo=UTC))
        assert [r.primary_key for r in selector.select(users, watermark)] == [(2,)]


def test_to_snake_case():
    assert to_snake_case("FactStream") == "fact_stream"
    assert to_snake_case("DimUser") == "dim_user"


@pytest.fixture
def driver_in_utc_plus_2(monkeypatch):
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is not available on this platform")
    # POSIX sign convention: Etc/GMT-2 is two hours ahead of UTC
    monkeypatch.setenv("TZ", "Etc/GMT-2")
    time.tzset()
    yield
    monkeypatch.undo()
    time.tzset()


def test_localize_row_reads_naive_values_as_driver_local_time(driver_in_utc_plus_2):
    row = localize_row({
        "user_id": 1,
        "updated_at": datetime(2025, 1, 3, 12, 0),
        "signup_at": datetime(2025, 1, 1, tzinfo=UTC),
        "country": None,
    })

    assert row["updated_at"] == datetime(2025, 1, 3, 10, 0, tzinfo=UTC)
    assert row["updated_at"].tzinfo == UTC
    assert row["signup_at"] == datetime(2025, 1, 1, tzinfo=UTC)
    assert row["user_id"] == 1
    assert row["country"] is None
