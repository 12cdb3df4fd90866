"""Process bootstrap: builds the queue runtime from settings.

The API process and the worker process each build exactly one
``QueueRuntime`` and close it on shutdown; nothing is created at import time.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

import redis.asyncio as redis

from mailqueue.core.config import Settings, get_settings
from mailqueue.core.email_jobs.handlers import OrderHook, register_email_handlers
from mailqueue.core.email_jobs.producer import EmailJobProducer
from mailqueue.core.job_queue.admin import QueueAdmin
from mailqueue.core.job_queue.backends import InMemoryJobQueue, RedisJobQueue
from mailqueue.core.job_queue.core import (
    BackoffPolicy,
    BackoffType,
    HandlerRegistry,
    JobOptions,
    JobQueue,
)
from mailqueue.core.job_queue.worker import (
    LoggingObserver,
    MetricsObserver,
    Worker,
    WorkerConfig,
    WorkerObserver,
)
from mailqueue.core.mail.sender import MailSender, create_mail_sender

logger = logging.getLogger(__name__)


def build_default_options(settings: Settings) -> JobOptions:
    return JobOptions(
        max_attempts=settings.JOB_MAX_ATTEMPTS,
        backoff=BackoffPolicy(
            type=BackoffType(settings.JOB_BACKOFF_TYPE.strip().lower()),
            delay_seconds=settings.JOB_BACKOFF_DELAY_SECONDS,
        ),
    )


def build_worker_config(settings: Settings) -> WorkerConfig:
    return WorkerConfig(
        concurrency=settings.WORKER_CONCURRENCY,
        poll_interval_seconds=settings.WORKER_POLL_INTERVAL_SECONDS,
        shutdown_timeout_seconds=settings.WORKER_SHUTDOWN_TIMEOUT_SECONDS,
        job_timeout_seconds=settings.WORKER_JOB_TIMEOUT_SECONDS,
    )


@dataclass
class QueueRuntime:
    """Everything a process needs to produce, run and administer email jobs."""

    settings: Settings
    queue: JobQueue
    registry: HandlerRegistry
    producer: EmailJobProducer
    admin: QueueAdmin
    mail_sender: MailSender
    redis_client: Optional[Any] = None

    def build_worker(
        self,
        config: Optional[WorkerConfig] = None,
        observers: Optional[List[WorkerObserver]] = None,
    ) -> Worker:
        if observers is None:
            observers = [LoggingObserver(self.queue.name), MetricsObserver(self.queue.name)]
        return Worker(
            self.queue,
            self.registry,
            config or build_worker_config(self.settings),
            observers=observers,
        )

    async def close(self) -> None:
        await self.mail_sender.close()
        await self.queue.close()
        if self.redis_client is not None:
            await self.redis_client.aclose()
            self.redis_client = None
        logger.info("Queue runtime closed", extra={"queue": self.queue.name})


def build_runtime(
    settings: Optional[Settings] = None,
    *,
    mail_sender: Optional[MailSender] = None,
    on_order_confirmed: Optional[OrderHook] = None,
    redis_client: Optional[Any] = None,
    clock: Callable[[], float] = time.time,
) -> QueueRuntime:
    """Construct queue, producer, handlers and admin from settings."""
    settings = settings or get_settings()
    options = build_default_options(settings)
    backend = settings.QUEUE_BACKEND.strip().lower()

    if backend == "memory":
        queue: JobQueue = InMemoryJobQueue(
            settings.QUEUE_NAME,
            default_options=options,
            lease_seconds=settings.JOB_LEASE_SECONDS,
            clock=clock,
        )
    elif backend == "redis":
        if redis_client is None:
            redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        queue = RedisJobQueue(
            redis_client,
            settings.QUEUE_NAME,
            key_prefix=settings.QUEUE_KEY_PREFIX,
            default_options=options,
            lease_seconds=settings.JOB_LEASE_SECONDS,
            clock=clock,
        )
    else:
        raise ValueError(f"Unknown QUEUE_BACKEND: {settings.QUEUE_BACKEND}")

    sender = mail_sender or create_mail_sender(settings)
    registry = register_email_handlers(
        HandlerRegistry(),
        sender,
        settings,
        on_order_confirmed=on_order_confirmed,
    )

    logger.info(
        f"Queue runtime built (backend={backend}, queue={settings.QUEUE_NAME}, mail={sender.name})",
        extra={"queue": settings.QUEUE_NAME},
    )
    return QueueRuntime(
        settings=settings,
        queue=queue,
        registry=registry,
        producer=EmailJobProducer(queue),
        admin=QueueAdmin(queue, settings),
        mail_sender=sender,
        redis_client=redis_client if backend == "redis" else None,
    )
