"""
Conflict resolution and merge of change rows into warehouse tables.

Each table merge runs in one sink transaction: change rows are consumed
in chunks, duplicate keys inside a chunk are resolved last-writer-wins,
fact rows are checked against the already merged dimensions, and the
survivors are upserted. Any exception leaves the transaction
uncommitted.
"""

import time
from collections.abc import Iterable, Iterator
from itertools import islice
from typing import Any

from spotify_cdc.core import catalog
from spotify_cdc.core.errors import StepTimeout
from spotify_cdc.core.models import ChangeRow, MergeOutcome, RowRejection, TableConfig
from spotify_cdc.observability.logger import get_logger
from spotify_cdc.warehouse.sink import BaseWarehouseSink, SinkTransaction

logger = get_logger(__name__)


def _chunks(rows: Iterable[ChangeRow], size: int) -> Iterator[list[ChangeRow]]:
    iterator = iter(rows)
    while True:
        chunk = list(islice(iterator, size))
        if not chunk:
            return
        yield chunk


class Merger:
    """
    Applies change rows to a table's warehouse target.

    Usage:
        merger = Merger(sink, tables=cycle_tables)
        outcome = merger.apply(table, selector.select(table, watermark))
    """

    def __init__(
        self,
        sink: BaseWarehouseSink,
        batch_size: int = 1000,
        tables: Iterable[TableConfig] = (),
        step_timeout_seconds: float | None = None,
    ):
        """
        Initialize the merger.

        Args:
            sink: Warehouse receiving the upserts
            batch_size: Change rows held in memory at a time
            tables: Configs of the cycle, used to locate referenced dimensions
            step_timeout_seconds: Budget for one table merge, None for no limit
        """
        if batch_size < 1:
            raise ValueError(f"batch_size must be positive, got {batch_size}")
        self.sink = sink
        self.batch_size = batch_size
        self._tables = {t.table: t for t in tables}
        self.step_timeout_seconds = step_timeout_seconds

    def reference_target(self, table: TableConfig, fk_column: str) -> tuple[str, str, str]:
        """
        Locate the dimension column a foreign key must resolve against.

        Args:
            table: Fact table config
            fk_column: Foreign key column on the fact table

        Returns:
            (target schema, target table, key column) of the dimension
        """
        ref_name = table.references[fk_column]
        ref = self._tables.get(ref_name)
        if ref is not None:
            return ref.target_schema, ref.target_name, ref.primary_key[0]

        entry = catalog.lookup(ref_name)
        key_column = entry["primary_key"][0] if entry else fk_column
        return table.target_schema, ref_name, key_column

    def apply(
        self,
        table: TableConfig,
        change_rows: Iterable[ChangeRow],
        deadline: float | None = None,
    ) -> MergeOutcome:
        """
        Merge a table's change set.

        Args:
            table: Table being merged
            change_rows: Rows ordered by CDC value ascending
            deadline: time.monotonic() value after which the merge is abandoned;
                defaults to now + step_timeout_seconds

        Returns:
            MergeOutcome with counts, rejections and the max CDC value seen

        Raises:
            StepTimeout: If the deadline passes before commit
        """
        if deadline is None and self.step_timeout_seconds is not None:
            deadline = time.monotonic() + self.step_timeout_seconds
        outcome = MergeOutcome()

        with self.sink.transaction() as tx:
            for chunk in _chunks(change_rows, self.batch_size):
                self._check_deadline(table, deadline)
                self._apply_chunk(tx, table, chunk, outcome)
            self._check_deadline(table, deadline)

        logger.debug(
            f"Merged {table.table_id} into {table.target_id}",
            extra={
                "table_id": table.table_id,
                "rows_seen": outcome.rows_seen,
                "rows_applied": outcome.rows_applied,
                "rows_superseded": outcome.rows_superseded,
                "rows_rejected": outcome.rows_rejected,
            },
        )
        return outcome

    def _check_deadline(self, table: TableConfig, deadline: float | None) -> None:
        if deadline is not None and time.monotonic() > deadline:
            raise StepTimeout(table.table_id, self.step_timeout_seconds or 0.0)

    def _apply_chunk(
        self,
        tx: SinkTransaction,
        table: TableConfig,
        chunk: list[ChangeRow],
        outcome: MergeOutcome,
    ) -> None:
        winners: dict[tuple, ChangeRow] = {}

        for row in chunk:
            outcome.rows_seen += 1
            if row.cdc_value is not None and (
                outcome.max_cdc_value is None or row.cdc_value > outcome.max_cdc_value
            ):
                outcome.max_cdc_value = row.cdc_value

            if row.primary_key is None:
                outcome.rejections.append(self._reject(
                    row, "missing_primary_key",
                    f"primary key {', '.join(table.primary_key)} is null",
                ))
                continue
            if row.cdc_value is None:
                outcome.rejections.append(self._reject(
                    row, "missing_cdc_value",
                    f"{table.cdc_col} is null or not a timestamp/number",
                ))
                continue

            current = winners.get(row.primary_key)
            if current is None:
                winners[row.primary_key] = row
            elif row.cdc_value >= current.cdc_value:
                winners[row.primary_key] = row
                outcome.rows_superseded += 1
            else:
                outcome.rows_superseded += 1

        survivors = list(winners.values())
        if table.references and survivors:
            survivors = self._resolve_references(tx, table, survivors, outcome)

        if survivors:
            outcome.rows_applied += tx.upsert(table, [row.data for row in survivors])

    def _resolve_references(
        self,
        tx: SinkTransaction,
        table: TableConfig,
        rows: list[ChangeRow],
        outcome: MergeOutcome,
    ) -> list[ChangeRow]:
        missing: dict[str, set[Any]] = {}
        for fk_column in table.references:
            values = {row.data.get(fk_column) for row in rows} - {None}
            schema, dim_table, key_column = self.reference_target(table, fk_column)
            found = tx.existing_keys(schema, dim_table, key_column, values) if values else set()
            missing[fk_column] = values - found

        resolved = []
        for row in rows:
            problems = []
            for fk_column in table.references:
                value = row.data.get(fk_column)
                schema, dim_table, _ = self.reference_target(table, fk_column)
                if value is None:
                    problems.append(f"{fk_column} is null")
                elif value in missing[fk_column]:
                    problems.append(f"{fk_column}={value} not found in {schema}.{dim_table}")

            if problems:
                outcome.rejections.append(self._reject(row, "missing_reference", "; ".join(problems)))
            else:
                resolved.append(row)
        return resolved

    @staticmethod
    def _reject(row: ChangeRow, rule: str, reason: str) -> RowRejection:
        return RowRejection(
            table_id=row.table_id,
            primary_key=row.primary_key,
            cdc_value=row.cdc_value,
            rule=rule,
            reason=reason,
            payload=row.data,
        )
