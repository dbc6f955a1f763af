"""Prometheus metrics for the notification scheduler."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info

# Application info
app_info = Info("marketplace_notifier", "Marketplace notifier application info")
app_info.info({"version": "0.1.0", "name": "marketplace-notifier"})

# Scan metrics
scan_rows_processed_total = Counter(
    "scan_rows_processed_total",
    "Total number of rows visited by scan routines",
    ["kind"],
)

scan_page_fetches_total = Counter(
    "scan_page_fetches_total",
    "Total number of page fetches issued by scan routines",
    ["kind"],
)

scan_row_errors_total = Counter(
    "scan_row_errors_total",
    "Total number of rows that failed processing",
    ["kind"],
)

scan_failed_batches_total = Counter(
    "scan_failed_batches_total",
    "Total number of sub-batches rolled back",
    ["kind"],
)

notifications_created_total = Counter(
    "notifications_created_total",
    "Total number of notifications created by scan routines",
    ["kind"],
)

state_transitions_total = Counter(
    "state_transitions_total",
    "Total number of entities moved to a terminal state",
    ["kind"],
)

scan_duration_seconds = Histogram(
    "scan_duration_seconds",
    "Time spent in a single scan routine",
    ["kind"],
    buckets=[0.1, 0.5, 1.0, 5.0, 15.0, 60.0, 300.0, 900.0, 3600.0],
)

# Scheduler metrics
scheduler_runs_total = Counter(
    "scheduler_runs_total",
    "Total number of scheduler runs",
    ["job_type", "status"],
)

scheduler_last_run_timestamp = Gauge(
    "scheduler_last_run_timestamp",
    "Timestamp of last scheduler run",
    ["job_type"],
)

run_lock_events_total = Counter(
    "run_lock_events_total",
    "Run lock outcomes",
    ["trigger", "outcome"],
)


def record_scan_result(kind: str, result) -> None:
    """Record counters for a finished scan routine."""
    scan_rows_processed_total.labels(kind=kind).inc(result.processed)
    scan_page_fetches_total.labels(kind=kind).inc(result.pages)
    notifications_created_total.labels(kind=kind).inc(result.notified)
    if result.expired:
        state_transitions_total.labels(kind=kind).inc(result.expired)
    if result.errors:
        scan_row_errors_total.labels(kind=kind).inc(result.errors)
    if result.failed_batches:
        scan_failed_batches_total.labels(kind=kind).inc(result.failed_batches)
    scan_duration_seconds.labels(kind=kind).observe(result.duration_seconds)


def record_scheduler_run(job_type: str, success: bool):
    """Record a scheduler job run."""
    status = "success" if success else "error"
    scheduler_runs_total.labels(job_type=job_type, status=status).inc()
    scheduler_last_run_timestamp.labels(job_type=job_type).set(time.time())


def record_run_lock(trigger: str, outcome: str):
    """Record a run lock outcome (acquired, held, unavailable)."""
    run_lock_events_total.labels(trigger=trigger, outcome=outcome).inc()
