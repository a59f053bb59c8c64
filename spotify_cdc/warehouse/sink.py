"""
Warehouse sink interface and the in-memory warehouse.

A merge runs inside one sink transaction: upserts and reference lookups
share it, and nothing becomes visible unless the whole table merge
succeeds.
"""

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from typing import Any

from spotify_cdc.core.models import TableConfig


class SinkTransaction(ABC):
    """Operations available to the merger while a table is being merged."""

    @abstractmethod
    def upsert(self, table: TableConfig, rows: list[dict[str, Any]]) -> int:
        """
        Insert-or-replace rows into the table's target by primary key.

        Args:
            table: Config of the table being merged
            rows: Full rows; every non-key column is overwritten

        Returns:
            Number of rows written
        """
        pass

    @abstractmethod
    def existing_keys(
        self, schema: str, table: str, column: str, values: Iterable[Any]
    ) -> set[Any]:
        """
        Return the subset of values present in schema.table.column.

        Sees writes made earlier in the same transaction.
        """
        pass


class BaseWarehouseSink(ABC):
    """Abstract warehouse sink."""

    @abstractmethod
    def transaction(self):
        """Context manager yielding a SinkTransaction; commits on clean exit."""
        pass


class _InMemoryTransaction(SinkTransaction):
    def __init__(self, warehouse: "InMemoryWarehouse"):
        self.warehouse = warehouse
        self.staged: dict[str, dict[tuple, dict[str, Any]]] = {}

    def upsert(self, table: TableConfig, rows: list[dict[str, Any]]) -> int:
        staged = self.staged.setdefault(table.target_id, {})
        for row in rows:
            key = tuple(row[column] for column in table.primary_key)
            staged[key] = dict(row)
        return len(rows)

    def existing_keys(
        self, schema: str, table: str, column: str, values: Iterable[Any]
    ) -> set[Any]:
        target_id = f"{schema}.{table}"
        wanted = set(values)
        found = set()
        with self.warehouse._lock:
            committed = list(self.warehouse.targets.get(target_id, {}).values())
        for row in committed + list(self.staged.get(target_id, {}).values()):
            if row.get(column) in wanted:
                found.add(row[column])
        return found


class InMemoryWarehouse(BaseWarehouseSink):
    """
    Dictionary-backed warehouse for tests, demos and dry runs.

    Holds both sides of the pipeline: `sources` maps a source table id to
    its rows, `targets` maps a target table id to {primary key: row}.
    """

    def __init__(self, sources: dict[str, list[dict[str, Any]]] | None = None):
        self.sources: dict[str, list[dict[str, Any]]] = sources if sources is not None else {}
        self.targets: dict[str, dict[tuple, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    @contextmanager
    def transaction(self) -> Iterator[SinkTransaction]:
        tx = _InMemoryTransaction(self)
        yield tx
        with self._lock:
            for target_id, rows in tx.staged.items():
                self.targets.setdefault(target_id, {}).update(rows)

    def add_source_rows(self, table_id: str, rows: list[dict[str, Any]]) -> None:
        """Append rows to a source table (creating it if needed)."""
        self.sources.setdefault(table_id, []).extend(dict(r) for r in rows)

    def rows(self, target_id: str) -> list[dict[str, Any]]:
        """Committed rows of a target table."""
        with self._lock:
            return [dict(r) for r in self.targets.get(target_id, {}).values()]

    def get_row(self, target_id: str, *key: Any) -> dict[str, Any] | None:
        with self._lock:
            row = self.targets.get(target_id, {}).get(tuple(key))
            return dict(row) if row is not None else None

