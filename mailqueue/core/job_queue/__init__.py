"""Job Queue Module.

Provides durable background job processing:
- Priority-then-FIFO scheduling with delays
- Retry with exponential or fixed backoff
- Leases and stalled-job recovery
- Bounded-concurrency worker with observers
- Operator administration
"""

from mailqueue.core.job_queue.core import (
    MAX_PRIORITY,
    BackoffPolicy,
    BackoffType,
    JobState,
    JobOptions,
    Job,
    create_job,
    JobQueue,
    QueueStats,
    HandlerResult,
    JobContext,
    JobHandler,
    FunctionHandler,
    HandlerRegistry,
)
from mailqueue.core.job_queue.backends import (
    InMemoryJobQueue,
    RedisJobQueue,
)
from mailqueue.core.job_queue.worker import (
    WorkerConfig,
    WorkerStats,
    WorkerObserver,
    LoggingObserver,
    MetricsObserver,
    Worker,
    setup_signal_handlers,
)
from mailqueue.core.job_queue.admin import (
    Dashboard,
    FailedJobsPage,
    QueueAdmin,
)

__all__ = [
    # Core
    "MAX_PRIORITY",
    "BackoffPolicy",
    "BackoffType",
    "JobState",
    "JobOptions",
    "Job",
    "create_job",
    "JobQueue",
    "QueueStats",
    "HandlerResult",
    "JobContext",
    "JobHandler",
    "FunctionHandler",
    "HandlerRegistry",
    # Backends
    "InMemoryJobQueue",
    "RedisJobQueue",
    # Worker
    "WorkerConfig",
    "WorkerStats",
    "WorkerObserver",
    "LoggingObserver",
    "MetricsObserver",
    "Worker",
    "setup_signal_handlers",
    # Admin
    "Dashboard",
    "FailedJobsPage",
    "QueueAdmin",
]
