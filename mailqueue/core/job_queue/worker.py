"""Job Queue Worker.

Provides worker implementation:
- Bounded concurrent execution
- Lease heartbeats and stall recovery
- Lifecycle observers (logging, metrics)
- Graceful shutdown
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import signal
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from mailqueue.core.errors import (
    DeliveryError,
    ErrorCode,
    HandlerNotFoundError,
    JobQueueError,
    QueueUnavailableError,
    StalledJobError,
)
from mailqueue.core.job_queue.core import (
    HandlerRegistry,
    HandlerResult,
    Job,
    JobContext,
    JobQueue,
    JobState,
)
from mailqueue.utils import metrics

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """Worker configuration."""
    concurrency: int = 5
    poll_interval_seconds: float = 1.0
    shutdown_timeout_seconds: float = 30.0
    job_timeout_seconds: Optional[float] = None
    # Defaults to a third of the queue lease
    heartbeat_interval_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if self.concurrency < 1:
            raise ValueError("concurrency must be at least 1")


@dataclass
class WorkerStats:
    """Worker statistics."""
    started_at: datetime
    jobs_processed: int = 0
    jobs_succeeded: int = 0
    jobs_failed: int = 0
    jobs_retried: int = 0
    jobs_stalled: int = 0
    jobs_lost: int = 0
    current_jobs: int = 0

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.started_at).total_seconds()


class WorkerObserver:
    """Receives job lifecycle events. Override the hooks you need."""

    def on_job_started(self, job: Job) -> None:
        pass

    def on_job_progress(self, job: Job, stage: str) -> None:
        pass

    def on_job_completed(self, job: Job, result: Any) -> None:
        pass

    def on_job_failed(self, job: Job, error: JobQueueError, will_retry: bool) -> None:
        pass

    def on_job_stalled(self, job_id: str) -> None:
        pass

    def on_job_lost(self, job: Job, error: JobQueueError) -> None:
        """The outcome could not be recorded because the lease was gone."""


class LoggingObserver(WorkerObserver):
    """Structured log line per lifecycle event."""

    def __init__(self, queue_name: str):
        self._queue_name = queue_name

    def _extra(self, job: Job, **fields: Any) -> Dict[str, Any]:
        return {
            "queue": self._queue_name,
            "job_id": job.id,
            "job_type": job.type,
            "attempt": job.attempts_made + 1,
            **fields,
        }

    def on_job_started(self, job: Job) -> None:
        logger.info(f"Processing job {job.id} ({job.type})", extra=self._extra(job))

    def on_job_progress(self, job: Job, stage: str) -> None:
        logger.debug(f"Job {job.id} progress: {stage}", extra=self._extra(job, stage=stage))

    def on_job_completed(self, job: Job, result: Any) -> None:
        logger.info(
            f"Job {job.id} completed",
            extra={
                "queue": self._queue_name,
                "job_id": job.id,
                "job_type": job.type,
                "attempt": job.attempts_made,
                "state": job.state.value,
            },
        )

    def on_job_failed(self, job: Job, error: JobQueueError, will_retry: bool) -> None:
        extra = {
            "queue": self._queue_name,
            "job_id": job.id,
            "job_type": job.type,
            "attempt": job.attempts_made,
            "state": job.state.value,
            "error_code": error.code.value,
        }
        if will_retry:
            if job.delay_until is not None and job.processed_at is not None:
                extra["delay_seconds"] = round(job.delay_until - job.processed_at, 3)
            logger.warning(f"Job {job.id} failed, will retry: {error.message}", extra=extra)
        else:
            logger.error(f"Job {job.id} failed permanently: {error.message}", extra=extra)

    def on_job_stalled(self, job_id: str) -> None:
        logger.warning(
            f"Job {job_id} stalled and was re-queued",
            extra={"queue": self._queue_name, "job_id": job_id},
        )

    def on_job_lost(self, job: Job, error: JobQueueError) -> None:
        logger.warning(
            f"Lost lease on job {job.id}, outcome discarded: {error.message}",
            extra=self._extra(job, error_code=error.code.value),
        )


class MetricsObserver(WorkerObserver):
    """Prometheus counters, durations and in-flight gauge."""

    def __init__(self, queue_name: str):
        self._queue_name = queue_name
        self._started: Dict[str, float] = {}

    def _finish(self, job: Job) -> None:
        metrics.worker_inflight_jobs.labels(queue=self._queue_name).dec()
        started = self._started.pop(job.id, None)
        if started is not None:
            metrics.queue_job_duration_seconds.labels(
                queue=self._queue_name, job_type=job.type
            ).observe(time.monotonic() - started)

    def on_job_started(self, job: Job) -> None:
        self._started[job.id] = time.monotonic()
        metrics.worker_inflight_jobs.labels(queue=self._queue_name).inc()

    def on_job_completed(self, job: Job, result: Any) -> None:
        self._finish(job)
        metrics.queue_jobs_completed_total.labels(
            queue=self._queue_name, job_type=job.type
        ).inc()

    def on_job_failed(self, job: Job, error: JobQueueError, will_retry: bool) -> None:
        self._finish(job)
        if will_retry:
            metrics.queue_jobs_retried_total.labels(
                queue=self._queue_name, job_type=job.type
            ).inc()
        else:
            metrics.queue_jobs_failed_total.labels(
                queue=self._queue_name, job_type=job.type, error_code=error.code.value
            ).inc()

    def on_job_stalled(self, job_id: str) -> None:
        metrics.queue_jobs_stalled_total.labels(queue=self._queue_name).inc()

    def on_job_lost(self, job: Job, error: JobQueueError) -> None:
        self._finish(job)


class Worker:
    """Job queue worker.

    One dispatcher loop claims up to `concurrency - in_flight` jobs per
    cycle and runs each in its own task, so no more than `concurrency`
    handlers ever run at once in this process.
    """

    def __init__(
        self,
        queue: JobQueue,
        registry: HandlerRegistry,
        config: Optional[WorkerConfig] = None,
        observers: Optional[List[WorkerObserver]] = None,
    ):
        self._queue = queue
        self._registry = registry
        self._config = config or WorkerConfig()
        self._observers: List[WorkerObserver] = list(observers or [])

        self._running = False
        self._shutdown_event: Optional[asyncio.Event] = None
        self._wakeup: Optional[asyncio.Event] = None
        self._loop_task: Optional[asyncio.Task] = None
        self._tasks: Set[asyncio.Task] = set()
        self._stats = WorkerStats(started_at=datetime.now(timezone.utc))

    @property
    def stats(self) -> WorkerStats:
        return self._stats

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def add_observer(self, observer: WorkerObserver) -> "Worker":
        self._observers.append(observer)
        return self

    async def start(self) -> None:
        """Start the worker and block until stopped."""
        if self._running:
            return

        self._running = True
        self._shutdown_event = asyncio.Event()
        self._wakeup = asyncio.Event()
        self._stats = WorkerStats(started_at=datetime.now(timezone.utc))

        logger.info(
            f"Starting worker for queue: {self._queue.name} "
            f"(concurrency={self._config.concurrency}, handlers={self._registry.types})"
        )

        self._loop_task = asyncio.create_task(self._dispatch_loop())

        # Wait for shutdown
        await self._shutdown_event.wait()

    async def stop(self) -> None:
        """Stop claiming jobs and wait for in-flight ones to settle."""
        if not self._running:
            return

        logger.info("Stopping worker...")
        self._running = False
        if self._wakeup:
            self._wakeup.set()

        if self._loop_task:
            await asyncio.gather(self._loop_task, return_exceptions=True)
            self._loop_task = None

        # Wait for current jobs with timeout
        if self._tasks:
            pending = list(self._tasks)
            try:
                await asyncio.wait_for(
                    asyncio.gather(*pending, return_exceptions=True),
                    timeout=self._config.shutdown_timeout_seconds,
                )
            except asyncio.TimeoutError:
                # Their leases expire and stall recovery re-queues them
                logger.warning(f"Shutdown timeout, cancelling {len(pending)} jobs")
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        self._tasks.clear()

        if self._shutdown_event:
            self._shutdown_event.set()

        logger.info(
            f"Worker stopped (processed={self._stats.jobs_processed}, "
            f"succeeded={self._stats.jobs_succeeded}, failed={self._stats.jobs_failed})"
        )

    async def drain(self) -> int:
        """Process every currently eligible job, then return how many ran.

        Jobs are claimed `concurrency` at a time. Retries scheduled with a
        backoff delay are not waited for.
        """
        processed = 0
        while True:
            await self._recover_stalled()
            jobs = await self._queue.fetch_next(self._config.concurrency)
            if not jobs:
                return processed
            await asyncio.gather(*(self._process_job(job) for job in jobs))
            processed += len(jobs)

    async def _dispatch_loop(self) -> None:
        """Main dispatch loop."""
        assert self._wakeup is not None
        while self._running:
            try:
                self._wakeup.clear()
                capacity = self._config.concurrency - len(self._tasks)
                if capacity > 0:
                    await self._recover_stalled()
                    for job in await self._queue.fetch_next(capacity):
                        self._spawn(job)
                await self._wait(self._config.poll_interval_seconds)

            except asyncio.CancelledError:
                break
            except QueueUnavailableError as e:
                logger.error(f"Queue unavailable: {e.message}", extra={"queue": self._queue.name})
                await self._wait(self._config.poll_interval_seconds)
            except Exception as e:
                logger.error(f"Dispatch loop error: {e}", exc_info=True)
                await self._wait(self._config.poll_interval_seconds)

    async def _wait(self, timeout: float) -> None:
        """Sleep until the poll interval passes or a job finishes."""
        if not self._running or self._wakeup is None:
            return
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            pass

    def _spawn(self, job: Job) -> None:
        task = asyncio.create_task(self._process_job(job))
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if self._wakeup:
            self._wakeup.set()

    async def _recover_stalled(self) -> None:
        for job_id in await self._queue.recover_stalled():
            self._stats.jobs_stalled += 1
            await self._notify("on_job_stalled", job_id)

    async def _process_job(self, job: Job) -> None:
        """Process a single claimed job."""
        self._stats.current_jobs += 1
        self._stats.jobs_processed += 1
        await self._notify("on_job_started", job)

        heartbeat = self._start_heartbeat(job)
        try:
            result = await self._execute(job)
        finally:
            if heartbeat:
                heartbeat.cancel()
            self._stats.current_jobs -= 1

        try:
            await self._settle(job, result)
        except StalledJobError as e:
            self._stats.jobs_lost += 1
            await self._notify("on_job_lost", job, e)
        except JobQueueError as e:
            # Record gone or store unreachable; the lease expiry re-queues it
            self._stats.jobs_lost += 1
            await self._notify("on_job_lost", job, e)
        except Exception as e:
            logger.exception(
                f"Recording outcome of job {job.id} failed",
                extra={"queue": self._queue.name, "job_id": job.id},
            )
            self._stats.jobs_lost += 1
            lost = QueueUnavailableError(f"Could not record outcome: {e}")
            await self._notify("on_job_lost", job, lost)

    async def _execute(self, job: Job) -> HandlerResult:
        """Run the handler, folding every outcome into a HandlerResult."""
        try:
            handler = self._registry.resolve(job.type)
        except HandlerNotFoundError as e:
            return HandlerResult.failure(e)

        ctx = JobContext(job, on_progress=self._progress)
        timeout = job.options.timeout_seconds or self._config.job_timeout_seconds

        try:
            if timeout:
                result = await asyncio.wait_for(handler.handle(ctx), timeout=timeout)
            else:
                result = await handler.handle(ctx)
        except asyncio.TimeoutError:
            return HandlerResult.failure(
                DeliveryError(f"Job timed out after {timeout}s", code=ErrorCode.JOB_TIMEOUT)
            )
        except JobQueueError as e:
            return HandlerResult.failure(e)
        except Exception as e:
            logger.exception(f"Handler for job {job.id} raised")
            return HandlerResult.failure(DeliveryError(str(e) or type(e).__name__))

        if not isinstance(result, HandlerResult):
            return HandlerResult.success(result)
        return result

    async def _settle(self, job: Job, result: HandlerResult) -> None:
        """Record the outcome in the queue."""
        if result.ok:
            done = await self._queue.mark_completed(job, result.value)
            self._stats.jobs_succeeded += 1
            await self._notify("on_job_completed", done, result.value)
            return

        error = result.error or DeliveryError("Handler reported failure")
        updated = await self._queue.mark_failed(
            job,
            error.message,
            retryable=error.retryable,
            # Nothing was attempted without a handler
            count_attempt=not isinstance(error, HandlerNotFoundError),
        )
        will_retry = updated.state == JobState.DELAYED
        if will_retry:
            self._stats.jobs_retried += 1
        else:
            self._stats.jobs_failed += 1
        await self._notify("on_job_failed", updated, error, will_retry)

    def _start_heartbeat(self, job: Job) -> Optional[asyncio.Task]:
        interval = self._config.heartbeat_interval_seconds
        if interval is None:
            interval = self._queue.lease_seconds / 3
        if interval <= 0:
            return None
        return asyncio.create_task(self._heartbeat(job, interval))

    async def _heartbeat(self, job: Job, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                if not await self._queue.extend_lease(job):
                    logger.warning(
                        f"Lease on job {job.id} could not be extended",
                        extra={"queue": self._queue.name, "job_id": job.id},
                    )
                    return
            except QueueUnavailableError as e:
                logger.warning(f"Heartbeat for job {job.id} failed: {e.message}")

    def _progress(self, job: Job, stage: str) -> None:
        for observer in self._observers:
            try:
                outcome = observer.on_job_progress(job, stage)
                if inspect.isawaitable(outcome):
                    asyncio.ensure_future(outcome)
            except Exception as e:
                logger.warning(f"Observer error in on_job_progress: {e}")

    async def _notify(self, hook: str, *args: Any) -> None:
        for observer in self._observers:
            try:
                outcome = getattr(observer, hook)(*args)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.warning(f"Observer error in {hook}: {e}")


def setup_signal_handlers(worker: Worker) -> None:
    """Setup signal handlers for graceful shutdown."""
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(worker.stop())

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, signal_handler)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass
