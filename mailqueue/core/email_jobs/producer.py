"""Producer API: typed enqueue operations for email jobs."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any, Awaitable, Mapping, Optional, Union

from pydantic import BaseModel

from mailqueue.core.errors import JobQueueError, QueueUnavailableError, ValidationError
from mailqueue.core.email_jobs.payloads import (
    EmailJobType,
    OrderSnapshot,
    PasswordResetPayload,
    UserSnapshot,
    WelcomePayload,
    coerce_model,
    order_payload,
)
from mailqueue.core.job_queue.core import JobQueue
from mailqueue.utils import metrics

logger = logging.getLogger(__name__)

# Greeting used when the account has no display name
DEFAULT_WELCOME_NAME = "Customer"

OrderLike = Union[OrderSnapshot, Mapping[str, Any]]
UserLike = Union[UserSnapshot, Mapping[str, Any]]


class EmailJobProducer:
    """Enqueues email jobs on an explicitly provided queue.

    Every method returns the new job id once the job is durably recorded;
    none of them wait for delivery.
    """

    def __init__(self, queue: JobQueue):
        self._queue = queue

    @property
    def queue(self) -> JobQueue:
        return self._queue

    async def _enqueue(
        self,
        job_type: EmailJobType,
        payload: BaseModel,
        priority: int,
        delay_seconds: float,
    ) -> str:
        try:
            options = dataclasses.replace(
                self._queue.default_options,
                priority=priority,
                delay_seconds=delay_seconds,
            )
            job_id = await self._queue.enqueue(
                job_type.value,
                payload.model_dump(mode="json"),
                options,
            )
        except JobQueueError as e:
            metrics.queue_enqueue_errors_total.labels(
                queue=self._queue.name, error_code=e.code.value
            ).inc()
            raise

        metrics.queue_jobs_enqueued_total.labels(
            queue=self._queue.name, job_type=job_type.value
        ).inc()
        logger.info(
            f"Email job {job_id} added to queue: {job_type.value}",
            extra={"queue": self._queue.name, "job_id": job_id, "job_type": job_type.value},
        )
        return job_id

    async def enqueue_order_confirmation(
        self,
        order: OrderLike,
        priority: int = 1,
        delay_seconds: float = 0.0,
    ) -> str:
        snapshot = coerce_model(OrderSnapshot, order, "order snapshot")
        payload = order_payload(snapshot, "order confirmation")
        return await self._enqueue(EmailJobType.ORDER_CONFIRMATION, payload, priority, delay_seconds)

    async def enqueue_order_status_update(
        self,
        order: OrderLike,
        priority: int = 2,
        delay_seconds: float = 0.0,
    ) -> str:
        snapshot = coerce_model(OrderSnapshot, order, "order snapshot")
        payload = order_payload(snapshot, "order status update")
        return await self._enqueue(EmailJobType.ORDER_STATUS_UPDATE, payload, priority, delay_seconds)

    async def enqueue_password_reset(
        self,
        email: str,
        reset_token: str,
        priority: int = 1,
        delay_seconds: float = 0.0,
    ) -> str:
        if not email or not reset_token:
            raise ValidationError("Password reset requires an email and a reset token")
        payload = coerce_model(
            PasswordResetPayload,
            {"email": email, "reset_token": reset_token},
            "password reset payload",
        )
        return await self._enqueue(EmailJobType.PASSWORD_RESET, payload, priority, delay_seconds)

    async def enqueue_welcome(
        self,
        user: UserLike,
        priority: int = 3,
        delay_seconds: float = 0.0,
    ) -> str:
        snapshot = coerce_model(UserSnapshot, user, "user snapshot")
        if not snapshot.email:
            raise ValidationError("No email address found for welcome email")
        payload = coerce_model(
            WelcomePayload,
            {
                "email": snapshot.email,
                "name": (snapshot.name or "").strip() or DEFAULT_WELCOME_NAME,
                "user": snapshot.model_dump(mode="json"),
            },
            "welcome payload",
        )
        return await self._enqueue(EmailJobType.WELCOME, payload, priority, delay_seconds)

    async def enqueue_refund_confirmation(
        self,
        order: OrderLike,
        priority: int = 2,
        delay_seconds: float = 0.0,
    ) -> str:
        snapshot = coerce_model(OrderSnapshot, order, "order snapshot")
        payload = order_payload(snapshot, "refund confirmation")
        return await self._enqueue(EmailJobType.REFUND_CONFIRMATION, payload, priority, delay_seconds)


async def enqueue_safely(pending: Awaitable[str], description: str = "email job") -> Optional[str]:
    """Await an enqueue call whose failure must not fail the caller.

    Registration and checkout flows use this: the job id is returned on
    success, None when the queue is down or the request was rejected.
    """
    try:
        return await pending
    except (QueueUnavailableError, ValidationError) as e:
        logger.warning(
            f"Could not queue {description}: {e.message}",
            extra={"error_code": e.code.value},
        )
        return None
