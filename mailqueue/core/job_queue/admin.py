"""Operator-facing queue administration.

Thin async wrappers over a ``JobQueue`` used by the HTTP routes and the
maintenance scripts. Nothing here moves a job except through the queue's
own transitions.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from mailqueue.core.config import Settings, get_settings
from mailqueue.core.errors import ValidationError
from mailqueue.core.job_queue.core import Job, JobQueue, JobState, QueueStats
from mailqueue.utils import metrics

logger = logging.getLogger(__name__)


def failed_job_view(job: Job) -> Dict[str, Any]:
    return {
        "id": job.id,
        "type": job.type,
        "payload": job.payload,
        "failed_reason": job.failed_reason,
        "processed_at": job.processed_at,
        "finished_on": job.finished_on,
        "attempts_made": job.attempts_made,
        "retry_count": job.retry_count,
        "options": job.options.to_dict(),
    }


def recent_failure_view(job: Job) -> Dict[str, Any]:
    return {
        "id": job.id,
        "type": job.type,
        "failed_reason": job.failed_reason,
        "finished_on": job.finished_on,
        "attempts_made": job.attempts_made,
    }


@dataclass
class FailedJobsPage:
    jobs: List[Job]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return max(1, math.ceil(self.total / self.limit)) if self.limit else 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "failed_jobs": [failed_job_view(job) for job in self.jobs],
            "pagination": {
                "current": self.page,
                "limit": self.limit,
                "total": self.total,
                "pages": self.pages,
            },
        }


@dataclass
class Dashboard:
    stats: QueueStats
    recent_failures: List[Job]
    is_healthy: bool
    paused: bool
    last_updated: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stats": self.stats.to_dict(),
            "recent_failures": [recent_failure_view(job) for job in self.recent_failures],
            "is_healthy": self.is_healthy,
            "paused": self.paused,
            "last_updated": self.last_updated.isoformat(),
        }


class QueueAdmin:
    """Inspection and control of one queue."""

    def __init__(self, queue: JobQueue, settings: Optional[Settings] = None):
        self._queue = queue
        self._settings = settings or get_settings()

    @property
    def queue(self) -> JobQueue:
        return self._queue

    async def get_stats(self) -> QueueStats:
        stats = await self._queue.get_stats()
        for state, count in stats.to_dict().items():
            metrics.queue_state_jobs.labels(queue=self._queue.name, state=state).set(count)
        return stats

    async def get_failed(self, page: int = 1, limit: int = 10) -> FailedJobsPage:
        if page < 1:
            raise ValidationError("page must be at least 1")
        if limit < 1:
            raise ValidationError("limit must be at least 1")

        stats = await self._queue.get_stats()
        jobs = await self._queue.get_failed((page - 1) * limit, limit)
        return FailedJobsPage(jobs=jobs, page=page, limit=limit, total=stats.failed)

    async def get_job(self, job_id: str) -> Optional[Job]:
        return await self._queue.get_job(job_id)

    async def retry(self, job_id: str) -> bool:
        retried = await self._queue.retry(job_id)
        if retried:
            logger.info(f"Job {job_id} retried by operator", extra={"queue": self._queue.name, "job_id": job_id})
        return retried

    async def retry_all(self) -> int:
        count = await self._queue.retry_all()
        logger.info(f"{count} failed jobs retried by operator", extra={"queue": self._queue.name, "count": count})
        return count

    async def pause(self) -> None:
        await self._queue.pause()
        logger.info("Queue paused", extra={"queue": self._queue.name})

    async def resume(self) -> None:
        await self._queue.resume()
        logger.info("Queue resumed", extra={"queue": self._queue.name})

    async def is_paused(self) -> bool:
        return await self._queue.is_paused()

    async def clean(
        self,
        completed_older_than_seconds: Optional[float] = None,
        failed_older_than_seconds: Optional[float] = None,
    ) -> Dict[str, int]:
        """Remove old completed and failed records; returns counts per state."""
        if completed_older_than_seconds is None:
            completed_older_than_seconds = self._settings.CLEAN_COMPLETED_GRACE_SECONDS
        if failed_older_than_seconds is None:
            failed_older_than_seconds = self._settings.CLEAN_FAILED_GRACE_SECONDS

        removed = {
            JobState.COMPLETED.value: await self._queue.clean(
                completed_older_than_seconds, [JobState.COMPLETED]
            ),
            JobState.FAILED.value: await self._queue.clean(
                failed_older_than_seconds, [JobState.FAILED]
            ),
        }
        logger.info(
            f"Queue cleaned: {removed}",
            extra={"queue": self._queue.name, "count": sum(removed.values())},
        )
        return removed

    async def dashboard(self) -> Dashboard:
        stats = await self.get_stats()
        recent = await self._queue.get_failed(0, self._settings.DASHBOARD_RECENT_FAILURES)
        return Dashboard(
            stats=stats,
            recent_failures=recent,
            is_healthy=stats.failed < self._settings.DASHBOARD_FAILED_THRESHOLD,
            paused=await self._queue.is_paused(),
        )
