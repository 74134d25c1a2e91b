"""
Prometheus metrics for the retail warehouse ETL engine

Counters and histograms live in a private registry so embedding
applications and tests do not collide with the default global one.
"""
import os
from typing import Optional

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()


# =======================
# JOB METRICS
# =======================

job_runs_total = Counter(
    name="etl_job_runs_total",
    documentation="Total number of ETL job runs by outcome",
    labelnames=["job_name", "status"],  # status: completed, failed
    registry=REGISTRY,
)

stage_duration_seconds = Histogram(
    name="etl_stage_duration_seconds",
    documentation="Time spent in each pipeline stage in seconds",
    labelnames=["stage"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 1800.0],
    registry=REGISTRY,
)

pipeline_runs_total = Counter(
    name="etl_pipeline_runs_total",
    documentation="Total number of pipeline runs by mode and outcome",
    labelnames=["mode", "status"],
    registry=REGISTRY,
)

# =======================
# ROW METRICS
# =======================

rows_written_total = Counter(
    name="etl_rows_written_total",
    documentation="Rows written to the warehouse",
    labelnames=["table", "operation"],  # operation: insert, expire, delete
    registry=REGISTRY,
)

facts_skipped_total = Counter(
    name="etl_facts_skipped_total",
    documentation="Transactions skipped because a current dimension row was missing",
    labelnames=["reason"],  # reason: missing_customer, missing_product
    registry=REGISTRY,
)

changed_rows_detected_total = Counter(
    name="etl_changed_rows_detected_total",
    documentation="Source rows flagged as new or changed by the change detector",
    labelnames=["source_table"],
    registry=REGISTRY,
)

# =======================
# CHECKPOINT METRICS
# =======================

checkpoint_timestamp_seconds = Gauge(
    name="etl_checkpoint_timestamp_seconds",
    documentation="Unix time of the last extracted timestamp per source",
    labelnames=["source_name"],
    registry=REGISTRY,
)


# =======================
# HELPER FUNCTIONS
# =======================

def generate_metrics() -> bytes:
    """Render the registry in Prometheus text format"""
    return generate_latest(REGISTRY)


def start_metrics_server(port: Optional[int] = None) -> None:
    """
    Start HTTP server for Prometheus metrics

    Args:
        port: Port to listen on (defaults to env var METRICS_PORT or 8000)
    """
    from prometheus_client import start_http_server

    metrics_port = port or int(os.getenv("METRICS_PORT", "8000"))
    start_http_server(metrics_port, registry=REGISTRY)


class track_duration:
    """
    Context manager timing a block into a histogram

    Usage:
        with track_duration(stage_duration_seconds, stage="load_fact_sales"):
            # do work
            pass
    """

    def __init__(self, histogram: Histogram, **labels):
        self.histogram = histogram
        self.labels = labels
        self.timer = None

    def __enter__(self):
        self.timer = self.histogram.labels(**self.labels).time()
        self.timer.__enter__()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.timer.__exit__(exc_type, exc_val, exc_tb)
        return False


def increment_counter(counter: Counter, value: float = 1.0, **labels) -> None:
    """
    Increment a counter metric, ignoring zero increments

    Args:
        counter: Prometheus Counter metric
        value: Amount to increment (default: 1.0)
        **labels: Label values for the metric
    """
    if value:
        counter.labels(**labels).inc(value)


def set_gauge(gauge: Gauge, value: float, **labels) -> None:
    gauge.labels(**labels).set(value)


def record_job_outcome(job_name: str, status: str) -> None:
    increment_counter(job_runs_total, 1, job_name=job_name, status=status)


def record_rows_written(table: str, inserted: int = 0, expired: int = 0, deleted: int = 0) -> None:
    """
    Record warehouse writes for one table.

    Args:
        table: Warehouse table name
        inserted: Rows inserted
        expired: Dimension versions expired
        deleted: Rows deleted (summary refresh)
    """
    increment_counter(rows_written_total, inserted, table=table, operation="insert")
    increment_counter(rows_written_total, expired, table=table, operation="expire")
    increment_counter(rows_written_total, deleted, table=table, operation="delete")
