"""
Watermark stores: durable "last processed change" per table.

Contract shared by every backend:
- get() returns the stored Watermark or None
- advance() replaces the value only if the new one is strictly greater
  (or nothing was stored); anything else is a logged no-op
- reset() forgets a table's watermark so the next cycle reloads it

The coordinator only calls advance() after the table's merge committed.
"""

import json
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from spotify_cdc.core.errors import ConfigurationError, WatermarkRegression
from spotify_cdc.core.models import CdcValue, Watermark, coerce_cdc_value
from spotify_cdc.observability import metrics
from spotify_cdc.observability.logger import get_logger

logger = get_logger(__name__)

# Top-level key of the legacy single-date tracking file
GLOBAL_KEY = "cdc"


def check_advance(table_id: str, stored: CdcValue | None, new_value: CdcValue) -> None:
    """
    Verify that new_value may replace stored.

    Raises:
        WatermarkRegression: If new_value is not strictly greater
        ConfigurationError: If the two values cannot be compared
    """
    if stored is None:
        return
    try:
        moves_forward = new_value > stored
    except TypeError as e:
        raise ConfigurationError(
            f"CDC value {new_value!r} is not comparable with stored watermark {stored!r}",
            table_id=table_id,
        ) from e
    if not moves_forward:
        raise WatermarkRegression(table_id, stored, new_value)


class WatermarkStore(ABC):
    """
    Abstract base class for watermark stores.

    Subclasses implement the raw read/write primitives; the monotonic
    advance rule lives here so every backend enforces it the same way.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    @abstractmethod
    def get(self, table_id: str) -> Watermark | None:
        """Return the stored watermark for a table, if any."""
        pass

    @abstractmethod
    def all(self) -> dict[str, Watermark]:
        """Return every stored watermark keyed by table id."""
        pass

    @abstractmethod
    def reset(self, table_id: str) -> bool:
        """
        Clear a table's watermark.

        Returns:
            True if a watermark was removed
        """
        pass

    @abstractmethod
    def _advance(self, table_id: str, value: CdcValue) -> Watermark:
        """Check and persist a new value; raise WatermarkRegression to refuse."""
        pass

    def advance(self, table_id: str, new_value: Any) -> bool:
        """
        Move a table's watermark forward.

        Args:
            table_id: Source table id
            new_value: Candidate watermark (datetime, date, ISO string or int)

        Returns:
            True if the stored watermark changed, False on regression

        Raises:
            ConfigurationError: If the value is empty or not comparable
        """
        try:
            value = coerce_cdc_value(new_value)
        except ValueError as e:
            raise ConfigurationError(str(e), table_id=table_id) from e
        if value is None:
            raise ConfigurationError("cannot advance watermark to an empty value", table_id=table_id)

        with self._lock:
            try:
                watermark = self._advance(table_id, value)
            except WatermarkRegression as e:
                logger.warning(
                    f"Watermark regression ignored: {e}",
                    extra={
                        "table_id": table_id,
                        "stored_value": str(e.stored_value),
                        "new_value": str(e.new_value),
                    },
                )
                metrics.record_watermark_regression(table_id)
                return False

        logger.info(
            f"Advanced watermark for {table_id} to {watermark.value}",
            extra={"table_id": table_id, "watermark": str(watermark.value)},
        )
        return True

    def snapshot(self) -> "InMemoryWatermarkStore":
        """Copy the current watermarks into a throwaway in-memory store (dry runs)."""
        copy = InMemoryWatermarkStore()
        for table_id, watermark in self.all().items():
            copy._watermarks[table_id] = watermark
        return copy


class InMemoryWatermarkStore(WatermarkStore):
    """Process-local store for tests and dry runs."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        super().__init__()
        self._watermarks: dict[str, Watermark] = {}
        for table_id, value in (initial or {}).items():
            self._watermarks[table_id] = Watermark(table_id=table_id, value=value)

    def get(self, table_id: str) -> Watermark | None:
        with self._lock:
            return self._watermarks.get(table_id)

    def all(self) -> dict[str, Watermark]:
        with self._lock:
            return dict(self._watermarks)

    def reset(self, table_id: str) -> bool:
        with self._lock:
            return self._watermarks.pop(table_id, None) is not None

    def _advance(self, table_id: str, value: CdcValue) -> Watermark:
        current = self._watermarks.get(table_id)
        check_advance(table_id, current.value if current else None, value)
        watermark = Watermark(table_id=table_id, value=value)
        self._watermarks[table_id] = watermark
        return watermark


class JsonFileWatermarkStore(WatermarkStore):
    """
    Watermarks kept in one human-readable JSON file.

    File format:
    ```json
    {
      "silver.DimUser": {"cdc": "2025-01-03T00:00:00+00:00",
                         "last_success_at": "2025-01-04T02:00:13+00:00"},
      "silver.FactStream": {"cdc": "2025-01-03T10:00:00+00:00"}
    }
    ```

    Operators replay a table by deleting its entry or blanking its "cdc".
    A top-level "cdc" string (the old single-date tracking file) acts as a
    shared watermark for tables without an entry of their own; an entry
    with a blank "cdc" opts a table out of it (full reload).
    Writes go to a temp file that replaces the original atomically.
    """

    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)

    def _load(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, encoding="utf-8") as f:
                content = f.read()
        except OSError as e:
            raise ConfigurationError(f"Cannot read watermark file {self.path}: {e}") from e
        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Watermark file {self.path} is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Watermark file {self.path} must contain a JSON object")
        return data

    def _save(self, data: dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
                f.write("\n")
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, self.path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    def _parse_entry(self, table_id: str, entry: Any) -> Watermark | None:
        if not isinstance(entry, dict) or entry.get("cdc") in (None, ""):
            return None
        try:
            return Watermark.from_record(table_id, entry)
        except ValueError as e:
            raise ConfigurationError(
                f"Malformed watermark entry in {self.path}: {e}", table_id=table_id
            ) from e

    def _global_watermark(self, table_id: str, data: dict[str, Any]) -> Watermark | None:
        shared = data.get(GLOBAL_KEY)
        if isinstance(shared, (str, int)) and shared != "":
            return Watermark(table_id=table_id, value=shared, last_success_at=None)
        return None

    def get(self, table_id: str) -> Watermark | None:
        with self._lock:
            data = self._load()
        if table_id in data:
            return self._parse_entry(table_id, data[table_id])
        return self._global_watermark(table_id, data)

    def all(self) -> dict[str, Watermark]:
        with self._lock:
            data = self._load()
        watermarks = {}
        for table_id, entry in data.items():
            if table_id == GLOBAL_KEY:
                continue
            watermark = self._parse_entry(table_id, entry)
            if watermark is not None:
                watermarks[table_id] = watermark
        return watermarks

    def reset(self, table_id: str) -> bool:
        """
        Forget a table's watermark.

        Under a legacy shared "cdc" date, deleting the entry would fall back
        to that date, so a blank entry is written instead.
        """
        with self._lock:
            data = self._load()
            if table_id in data:
                current = self._parse_entry(table_id, data[table_id])
            else:
                current = self._global_watermark(table_id, data)
            if current is None:
                return False

            if self._global_watermark(table_id, data) is not None:
                data[table_id] = {"cdc": None}
            else:
                del data[table_id]
            self._save(data)
        logger.info(f"Reset watermark for {table_id}", extra={"table_id": table_id})
        return True

    def _advance(self, table_id: str, value: CdcValue) -> Watermark:
        data = self._load()
        if table_id in data:
            current = self._parse_entry(table_id, data[table_id])
        else:
            current = self._global_watermark(table_id, data)
        check_advance(table_id, current.value if current else None, value)

        watermark = Watermark(
            table_id=table_id, value=value, last_success_at=datetime.now(timezone.utc)
        )
        data[table_id] = watermark.to_record()
        self._save(data)
        return watermark
