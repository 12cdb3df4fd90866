"""Prometheus metrics for the mail queue.

All metric objects are defined at import time and shared by the producer,
the worker observers and the operator endpoints.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

queue_jobs_enqueued_total = Counter(
    "mailqueue_jobs_enqueued_total",
    "Jobs durably enqueued",
    ["queue", "job_type"],
)
queue_enqueue_errors_total = Counter(
    "mailqueue_enqueue_errors_total",
    "Enqueue attempts rejected or lost",
    ["queue", "error_code"],
)
queue_jobs_completed_total = Counter(
    "mailqueue_jobs_completed_total",
    "Jobs completed successfully",
    ["queue", "job_type"],
)
queue_jobs_failed_total = Counter(
    "mailqueue_jobs_failed_total",
    "Jobs moved to the failed state",
    ["queue", "job_type", "error_code"],
)
queue_jobs_retried_total = Counter(
    "mailqueue_jobs_retried_total",
    "Failed attempts scheduled for retry with backoff",
    ["queue", "job_type"],
)
queue_jobs_stalled_total = Counter(
    "mailqueue_jobs_stalled_total",
    "Active jobs whose lease expired and were re-queued",
    ["queue"],
)
queue_job_duration_seconds = Histogram(
    "mailqueue_job_duration_seconds",
    "Handler execution time",
    ["queue", "job_type"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)
worker_inflight_jobs = Gauge(
    "mailqueue_worker_inflight_jobs",
    "Jobs currently executing in this worker process",
    ["queue"],
)
queue_state_jobs = Gauge(
    "mailqueue_state_jobs",
    "Job records per state, sampled on stats requests",
    ["queue", "state"],
)
