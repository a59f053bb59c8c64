"""
Prometheus metrics collection for spotify-cdc-loader

Tracks rows moved per table, table outcomes, durations and watermark
positions so a scheduler or dashboard can see how far each table is.
"""
import os
from datetime import datetime
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Global registry for metrics
REGISTRY = CollectorRegistry()


# =======================
# ROW METRICS
# =======================

rows_selected_total = Counter(
    name="cdc_rows_selected_total",
    documentation="Total number of change rows read from source tables",
    labelnames=["table_id"],
    registry=REGISTRY,
)

rows_applied_total = Counter(
    name="cdc_rows_applied_total",
    documentation="Total number of rows upserted into the warehouse",
    labelnames=["table_id"],
    registry=REGISTRY,
)

rows_rejected_total = Counter(
    name="cdc_rows_rejected_total",
    documentation="Total number of change rows quarantined",
    labelnames=["table_id", "rule"],
    registry=REGISTRY,
)

rows_superseded_total = Counter(
    name="cdc_rows_superseded_total",
    documentation="Total number of older row versions discarded by last-writer-wins",
    labelnames=["table_id"],
    registry=REGISTRY,
)

# =======================
# TABLE / CYCLE METRICS
# =======================

table_runs_total = Counter(
    name="cdc_table_runs_total",
    documentation="Table outcomes per cycle",
    labelnames=["table_id", "status"],  # status: succeeded, failed, skipped, cancelled
    registry=REGISTRY,
)

table_duration_seconds = Histogram(
    name="cdc_table_duration_seconds",
    documentation="Time spent selecting and merging one table",
    labelnames=["table_id"],
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0, 300.0, 900.0],
    registry=REGISTRY,
)

cycles_total = Counter(
    name="cdc_cycles_total",
    documentation="Total number of load cycles",
    labelnames=["status"],  # status: succeeded, partial, cancelled
    registry=REGISTRY,
)

# =======================
# WATERMARK METRICS
# =======================

watermark_value = Gauge(
    name="cdc_watermark_value",
    documentation="Current watermark (epoch seconds for timestamps, raw value for integers)",
    labelnames=["table_id"],
    registry=REGISTRY,
)

watermark_regressions_total = Counter(
    name="cdc_watermark_regressions_total",
    documentation="Refused watermark advances whose value was not strictly greater",
    labelnames=["table_id"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics in text format

    Returns:
        Metrics in Prometheus text format
    """
    return generate_latest(REGISTRY)


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    # Lazy import: no port binding unless the endpoint is wanted
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


def observe_histogram(histogram: Histogram, value: float, **labels) -> None:
    histogram.labels(**labels).observe(value)


def watermark_as_number(value) -> float | None:
    """Express a CDC value as a gauge reading."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.timestamp()
    return float(value)


# =======================
# LOADER-SPECIFIC HELPERS
# =======================

def record_table_result(result) -> None:
    """
    Record the metrics for one TableResult.

    Args:
        result: TableResult produced by the coordinator
    """
    table_id = result.table_id
    increment_counter(table_runs_total, 1, table_id=table_id, status=result.status)

    if result.status in ("skipped", "cancelled"):
        return

    observe_histogram(table_duration_seconds, result.elapsed_seconds, table_id=table_id)
    if result.rows_selected:
        increment_counter(rows_selected_total, result.rows_selected, table_id=table_id)
    if result.rows_applied:
        increment_counter(rows_applied_total, result.rows_applied, table_id=table_id)
    if result.rows_superseded:
        increment_counter(rows_superseded_total, result.rows_superseded, table_id=table_id)
    for rejection in result.rejections:
        increment_counter(rows_rejected_total, 1, table_id=table_id, rule=rejection.rule)

    gauge_value = watermark_as_number(result.new_watermark)
    if gauge_value is not None:
        set_gauge(watermark_value, gauge_value, table_id=table_id)


def record_watermark_regression(table_id: str) -> None:
    increment_counter(watermark_regressions_total, 1, table_id=table_id)


def record_cycle(result) -> None:
    """
    Record the outcome of a whole cycle.

    Args:
        result: CycleResult produced by the coordinator
    """
    if result.cancelled:
        status = "cancelled"
    elif result.succeeded:
        status = "succeeded"
    else:
        status = "partial"
    increment_counter(cycles_total, 1, status=status)
