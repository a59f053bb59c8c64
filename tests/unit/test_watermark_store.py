"""
Unit tests for watermark stores (in-memory and JSON file).
"""

import json
from datetime import datetime, timedelta, timezone

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from spotify_cdc.core.errors import ConfigurationError, WatermarkRegression
from spotify_cdc.state import InMemoryWatermarkStore, JsonFileWatermarkStore, check_advance

UTC = timezone.utc
JAN_3 = datetime(2025, 1, 3, tzinfo=UTC)


class TestCheckAdvance:
    """Tests for the monotonic advance rule"""

    def test_first_value_always_accepted(self):
        check_advance("silver.DimUser", None, JAN_3)

    def test_equal_value_is_a_regression(self):
        with pytest.raises(WatermarkRegression):
            check_advance("silver.DimUser", JAN_3, JAN_3)

    def test_older_value_is_a_regression(self):
        with pytest.raises(WatermarkRegression) as exc_info:
            check_advance("silver.DimUser", JAN_3, JAN_3 - timedelta(days=1))
        assert exc_info.value.stored_value == JAN_3

    def test_incomparable_values(self):
        with pytest.raises(ConfigurationError):
            check_advance("silver.DimUser", JAN_3, 17)


class TestInMemoryWatermarkStore:
    """Tests for InMemoryWatermarkStore"""

    def test_get_missing(self):
        assert InMemoryWatermarkStore().get("silver.DimUser") is None

    def test_advance_and_get(self):
        store = InMemoryWatermarkStore()
        assert store.advance("silver.DimUser", "2025-01-03") is True
        assert store.get("silver.DimUser").value == JAN_3

    def test_regression_is_noop(self):
        store = InMemoryWatermarkStore({"silver.DimUser": JAN_3})
        assert store.advance("silver.DimUser", "2025-01-02") is False
        assert store.advance("silver.DimUser", JAN_3) is False
        assert store.get("silver.DimUser").value == JAN_3

    def test_empty_value_rejected(self):
        with pytest.raises(ConfigurationError):
            InMemoryWatermarkStore().advance("silver.DimUser", "")

    def test_reset(self):
        store = InMemoryWatermarkStore({"silver.DimUser": JAN_3})
        assert store.reset("silver.DimUser") is True
        assert store.reset("silver.DimUser") is False
        assert store.get("silver.DimUser") is None

    def test_snapshot_is_independent(self):
        store = InMemoryWatermarkStore({"silver.DimUser": JAN_3})
        copy = store.snapshot()
        copy.advance("silver.DimUser", JAN_3 + timedelta(days=1))
        assert store.get("silver.DimUser").value == JAN_3

    @settings(max_examples=50, deadline=None)
    @given(st.lists(st.integers(min_value=-1000, max_value=1000), min_size=1, max_size=30))
    def test_watermark_never_decreases(self, values):
        store = InMemoryWatermarkStore()
        seen = []
        for value in values:
            store.advance("silver.Plays", value)
            seen.append(store.get("silver.Plays").value)
        assert seen == sorted(seen)
        assert seen[-1] == max(values)


class TestJsonFileWatermarkStore:
    """Tests for JsonFileWatermarkStore"""

    def test_missing_file_means_no_watermarks(self, tmp_path):
        store = JsonFileWatermarkStore(tmp_path / "watermarks.json")
        assert store.get("silver.DimUser") is None
        assert store.all() == {}

    def test_advance_persists_record_shape(self, tmp_path):
        path = tmp_path / "state" / "watermarks.json"
        store = JsonFileWatermarkStore(path)
        store.advance("silver.DimUser", JAN_3)
        store.advance("silver.Plays", 42)

        data = json.loads(path.read_text())
        assert data["silver.DimUser"]["cdc"] == "2025-01-03T00:00:00+00:00"
        assert "last_success_at" in data["silver.DimUser"]
        assert data["silver.Plays"]["cdc"] == 42

        reopened = JsonFileWatermarkStore(path)
        assert reopened.get("silver.DimUser").value == JAN_3
        assert reopened.get("silver.Plays").value == 42

    def test_regression_leaves_file_untouched(self, tmp_path):
        path = tmp_path / "watermarks.json"
        store = JsonFileWatermarkStore(path)
        store.advance("silver.DimUser", JAN_3)
        before = path.read_text()

        assert store.advance("silver.DimUser", "2025-01-01") is False
        assert path.read_text() == before

    def test_blank_entry_counts_as_absent(self, tmp_path):
        path = tmp_path / "watermarks.json"
        path.write_text(json.dumps({"silver.DimUser": {"cdc": ""}}))
        assert JsonFileWatermarkStore(path).get("silver.DimUser") is None

    def test_legacy_global_date_is_shared_fallback(self, tmp_path):
        path = tmp_path / "cdc.json"
        path.write_text(json.dumps({"cdc": "2025-01-02"}))
        store = JsonFileWatermarkStore(path)

        assert store.get("silver.DimUser").value == datetime(2025, 1, 2, tzinfo=UTC)
        assert store.advance("silver.DimUser", "2025-01-01") is False
        assert store.advance("silver.DimUser", JAN_3) is True
        assert store.get("silver.DimUser").value == JAN_3
        assert store.get("silver.DimArtist").value == datetime(2025, 1, 2, tzinfo=UTC)
        assert "cdc" not in store.all()

    def test_reset_removes_entry(self, tmp_path):
        path = tmp_path / "watermarks.json"
        store = JsonFileWatermarkStore(path)
        store.advance("silver.DimUser", JAN_3)
        assert store.reset("silver.DimUser") is True
        assert "silver.DimUser" not in json.loads(path.read_text())

    def test_reset_under_global_date_forces_full_load(self, tmp_path):
        path = tmp_path / "cdc.json"
        path.write_text(json.dumps({
            "cdc": "2025-01-05",
            "silver.DimUser": {"cdc": "2025-01-10"},
        }))
        store = JsonFileWatermarkStore(path)

        assert store.reset("silver.DimUser") is True
        assert store.get("silver.DimUser") is None
        assert store.reset("silver.DimUser") is False
        assert json.loads(path.read_text())["cdc"] == "2025-01-05"

    def test_reset_of_inherited_global_date(self, tmp_path):
        path = tmp_path / "cdc.json"
        path.write_text(json.dumps({"cdc": "2025-01-05"}))
        store = JsonFileWatermarkStore(path)

        assert store.reset("silver.DimArtist") is True
        assert store.get("silver.DimArtist") is None
        assert store.get("silver.DimUser").value == datetime(2025, 1, 5, tzinfo=UTC)
        assert "silver.DimArtist" not in store.all()

        # advancing after the reset starts from nothing again
        assert store.advance("silver.DimArtist", "2025-01-01") is True
        assert store.get("silver.DimArtist").value == datetime(2025, 1, 1, tzinfo=UTC)

    def test_global_date_carries_no_success_time(self, tmp_path):
        path = tmp_path / "cdc.json"
        path.write_text(json.dumps({"cdc": "2025-01-05"}))
        watermark = JsonFileWatermarkStore(path).get("silver.DimUser")
        assert watermark.last_success_at is None
        assert watermark.to_record() == {"cdc": "2025-01-05T00:00:00+00:00", "last_success_at": None}

    def test_corrupt_file(self, tmp_path):
        path = tmp_path / "watermarks.json"
        path.write_text("{oops")
        with pytest.raises(ConfigurationError):
            JsonFileWatermarkStore(path).get("silver.DimUser")
