"""
Load coordinator: drives one incremental cycle over a table set.

Per table: read the watermark, select the changed rows, merge them, and
only after the merge committed advance the watermark to the greatest
CDC value seen. Failures stay scoped to the failing table and its
dependents; independent tables run in parallel.
"""

import threading
import time
import uuid
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from datetime import datetime, timezone

from spotify_cdc.core.merger import Merger
from spotify_cdc.core.models import CycleResult, TableConfig, TableResult
from spotify_cdc.core.ordering import DependencyOrderer
from spotify_cdc.incremental.readers.base_selector import BaseChangeSelector, effective_watermark
from spotify_cdc.observability import metrics
from spotify_cdc.observability.logger import get_logger, log_operation
from spotify_cdc.state.watermark_store import WatermarkStore
from spotify_cdc.warehouse.sink import BaseWarehouseSink

from .run_lock import RunLock, default_run_lock

logger = get_logger(__name__)


class LoadCoordinator:
    """
    Runs incremental load cycles.

    Usage:
        coordinator = LoadCoordinator(selector, sink, store, max_workers=4)
        result = coordinator.run_cycle(tables)
        print(result.summary())
    """

    def __init__(
        self,
        selector: BaseChangeSelector,
        sink: BaseWarehouseSink,
        watermark_store: WatermarkStore,
        *,
        max_workers: int = 4,
        batch_size: int = 1000,
        step_timeout_seconds: float | None = None,
        quarantine=None,
        run_lock: RunLock | None = None,
    ):
        """
        Initialize the coordinator.

        Args:
            selector: Reads changed rows from the sources
            sink: Warehouse receiving the merges
            watermark_store: Per-table watermarks
            max_workers: Tables loaded concurrently
            batch_size: Change rows merged per chunk
            step_timeout_seconds: Budget for one table's select+merge, None for no limit
            quarantine: Optional writer with quarantine_batch(cycle_id, rejections)
            run_lock: Lock shared by coordinators of this process (default: module-wide)
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be positive, got {max_workers}")
        self.selector = selector
        self.sink = sink
        self.watermark_store = watermark_store
        self.max_workers = max_workers
        self.batch_size = batch_size
        self.step_timeout_seconds = step_timeout_seconds
        self.quarantine = quarantine
        self.run_lock = run_lock or default_run_lock
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """
        Request cancellation of the running cycle.

        Tables already started finish; tables not yet started are
        reported as cancelled.
        """
        logger.info("Cancellation requested")
        self._cancel.set()

    @property
    def cancel_requested(self) -> bool:
        return self._cancel.is_set()

    def run_cycle(self, tables: list[TableConfig]) -> CycleResult:
        """
        Run one incremental cycle.

        Args:
            tables: Table configs in configuration order

        Returns:
            CycleResult with one TableResult per table, in dependency order

        Raises:
            ConfigurationError: If the dependency graph is invalid (nothing runs)
            CycleInProgressError: If a cycle for the same table set is running
        """
        orderer = DependencyOrderer(tables)
        ordered = orderer.order()
        lock_key = RunLock.key_for(ordered)

        with self.run_lock.hold(lock_key):
            self._cancel.clear()
            cycle = CycleResult(cycle_id=uuid.uuid4().hex)
            logger.info(
                f"Starting cycle {cycle.cycle_id} for {len(ordered)} tables",
                extra={"cycle_id": cycle.cycle_id, "table_order": [t.table_id for t in ordered]},
            )

            merger = Merger(
                self.sink,
                batch_size=self.batch_size,
                tables=ordered,
                step_timeout_seconds=self.step_timeout_seconds,
            )
            results = self._schedule(orderer, ordered, merger, cycle.cycle_id)

            cycle.tables = [results[t.table] for t in ordered]
            cycle.cancelled = self._cancel.is_set()
            cycle.finished_at = datetime.now(timezone.utc)

        for result in cycle.tables:
            metrics.record_table_result(result)
        metrics.record_cycle(cycle)

        logger.info(
            f"Finished cycle {cycle.cycle_id}",
            extra={"cycle_id": cycle.cycle_id, "summary": cycle.summary()},
        )
        return cycle

    def _schedule(
        self,
        orderer: DependencyOrderer,
        ordered: list[TableConfig],
        merger: Merger,
        cycle_id: str,
    ) -> dict[str, TableResult]:
        results: dict[str, TableResult] = {}
        pending = list(ordered)
        running: dict[Future, TableConfig] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cdc-worker") as pool:
            while pending or running:
                for table in list(pending):
                    prerequisites = sorted(orderer.prerequisites(table.table))
                    if any(name not in results for name in prerequisites):
                        continue
                    pending.remove(table)

                    if self._cancel.is_set():
                        results[table.table] = TableResult(
                            table_id=table.table_id,
                            status="cancelled",
                            skipped_reason="cycle cancelled before the table started",
                        )
                        continue

                    blocked = [name for name in prerequisites if not results[name].ok]
                    if blocked:
                        reasons = ", ".join(f"{name} {results[name].status}" for name in blocked)
                        results[table.table] = TableResult(
                            table_id=table.table_id,
                            status="skipped",
                            skipped_reason=f"prerequisite not loaded: {reasons}",
                        )
                        logger.warning(
                            f"Skipping {table.table_id}: prerequisite not loaded ({reasons})",
                            extra={"cycle_id": cycle_id, "table_id": table.table_id},
                        )
                        continue

                    future = pool.submit(self._process_table, table, merger, cycle_id)
                    running[future] = table

                if not running:
                    continue

                done, _ = wait(running, return_when=FIRST_COMPLETED)
                for future in done:
                    table = running.pop(future)
                    results[table.table] = future.result()
                    downstream = orderer.dependents(table.table)
                    if results[table.table].status == "failed" and downstream:
                        logger.warning(
                            f"{table.table_id} failed; dependents will be skipped: {sorted(downstream)}",
                            extra={"cycle_id": cycle_id, "table_id": table.table_id},
                        )

        return results

    def _process_table(self, table: TableConfig, merger: Merger, cycle_id: str) -> TableResult:
        """Load one table. Never raises: failures become a failed TableResult."""
        if self._cancel.is_set():
            return TableResult(
                table_id=table.table_id,
                status="cancelled",
                skipped_reason="cycle cancelled before the table started",
            )

        started = time.monotonic()
        previous = None
        stored_value = None

        try:
            with log_operation(
                f"Loading {table.table_id}", logger=logger, table_id=table.table_id, cycle_id=cycle_id
            ):
                deadline = (
                    started + self.step_timeout_seconds if self.step_timeout_seconds else None
                )
                stored = self.watermark_store.get(table.table_id)
                stored_value = stored.value if stored is not None else None
                watermark = effective_watermark(table, stored)
                previous = watermark.value if watermark is not None else None

                rows = self.selector.select(table, watermark)
                try:
                    outcome = merger.apply(table, rows, deadline=deadline)
                finally:
                    rows.close()

                if outcome.rejections:
                    logger.warning(
                        f"{outcome.rows_rejected} rows of {table.table_id} rejected",
                        extra={
                            "cycle_id": cycle_id,
                            "table_id": table.table_id,
                            "reasons": [r.reason for r in outcome.rejections[:10]],
                        },
                    )
                    if self.quarantine is not None:
                        self.quarantine.quarantine_batch(cycle_id, outcome.rejections)

                new_value = stored_value
                advanced = False
                if outcome.max_cdc_value is not None:
                    advanced = self.watermark_store.advance(table.table_id, outcome.max_cdc_value)
                    if advanced:
                        new_value = outcome.max_cdc_value

        except Exception as e:
            return TableResult(
                table_id=table.table_id,
                status="failed",
                previous_watermark=previous,
                new_watermark=stored_value,
                error=str(e),
                error_type=type(e).__name__,
                elapsed_seconds=time.monotonic() - started,
            )

        return TableResult(
            table_id=table.table_id,
            status="succeeded",
            rows_selected=outcome.rows_seen,
            rows_applied=outcome.rows_applied,
            rows_superseded=outcome.rows_superseded,
            rows_rejected=outcome.rows_rejected,
            rejections=outcome.rejections,
            previous_watermark=previous,
            new_watermark=new_value,
            watermark_advanced=advanced,
            elapsed_seconds=time.monotonic() - started,
        )
