"""Job Queue Core.

Provides job queue primitives:
- Job record and state machine
- Options and backoff policy
- Queue interface
- Handler result type and registry
"""

from __future__ import annotations

import asyncio
import copy
import json
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from mailqueue.core.errors import DeliveryError, HandlerNotFoundError, JobQueueError, ValidationError

# Lower number runs first. Bounded so (priority, sequence) packs into a
# single exact float score in the Redis backend.
MAX_PRIORITY = 2 ** 21
PRIORITY_SCALE = 2 ** 32


class JobState(str, Enum):
    """State of a job."""
    WAITING = "waiting"
    DELAYED = "delayed"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    def can_transition_to(self, other: "JobState") -> bool:
        return other in _TRANSITIONS[self]


_TRANSITIONS: Dict[JobState, frozenset] = {
    JobState.WAITING: frozenset({JobState.ACTIVE}),
    JobState.DELAYED: frozenset({JobState.WAITING}),
    # ACTIVE -> WAITING is stall recovery
    JobState.ACTIVE: frozenset({
        JobState.COMPLETED,
        JobState.DELAYED,
        JobState.FAILED,
        JobState.WAITING,
    }),
    JobState.COMPLETED: frozenset(),
    JobState.FAILED: frozenset({JobState.WAITING}),
}

TERMINAL_STATES = (JobState.COMPLETED, JobState.FAILED)


class BackoffType(str, Enum):
    EXPONENTIAL = "exponential"
    FIXED = "fixed"


@dataclass(frozen=True)
class BackoffPolicy:
    """Delay before the next attempt, given how many attempts were made."""
    type: BackoffType = BackoffType.EXPONENTIAL
    delay_seconds: float = 2.0

    def delay_for(self, attempts_made: int) -> float:
        if self.type == BackoffType.FIXED:
            return self.delay_seconds
        return self.delay_seconds * (2 ** max(attempts_made - 1, 0))

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type.value, "delay_seconds": self.delay_seconds}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BackoffPolicy":
        return cls(
            type=BackoffType(data.get("type", BackoffType.EXPONENTIAL.value)),
            delay_seconds=float(data.get("delay_seconds", 2.0)),
        )


@dataclass
class JobOptions:
    """Options for job execution."""
    priority: int = 0
    delay_seconds: float = 0.0  # Delay before first execution
    max_attempts: int = 3
    backoff: BackoffPolicy = field(default_factory=BackoffPolicy)
    timeout_seconds: Optional[float] = None

    def __post_init__(self) -> None:
        if isinstance(self.priority, bool) or not isinstance(self.priority, int):
            raise ValidationError(f"priority must be an integer, got {self.priority!r}")
        if not 0 <= self.priority <= MAX_PRIORITY:
            raise ValidationError(f"priority must be within [0, {MAX_PRIORITY}]")
        if self.delay_seconds < 0:
            raise ValidationError("delay_seconds must not be negative")
        if self.max_attempts < 1:
            raise ValidationError("max_attempts must be at least 1")
        if self.backoff.delay_seconds < 0:
            raise ValidationError("backoff delay must not be negative")
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValidationError("timeout_seconds must be positive")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority,
            "delay_seconds": self.delay_seconds,
            "max_attempts": self.max_attempts,
            "backoff": self.backoff.to_dict(),
            "timeout_seconds": self.timeout_seconds,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JobOptions":
        return cls(
            priority=int(data.get("priority", 0)),
            delay_seconds=float(data.get("delay_seconds", 0.0)),
            max_attempts=int(data.get("max_attempts", 3)),
            backoff=BackoffPolicy.from_dict(data.get("backoff") or {}),
            timeout_seconds=data.get("timeout_seconds"),
        )


@dataclass
class Job:
    """A durable unit of work."""
    id: str
    queue_name: str
    type: str
    payload: Dict[str, Any]
    options: JobOptions
    state: JobState = JobState.WAITING
    seq: int = 0  # FIFO tiebreak within one priority
    attempts_made: int = 0
    retry_count: int = 0  # Operator retries
    stalled_count: int = 0
    failed_reason: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    processed_at: Optional[float] = None
    finished_on: Optional[float] = None
    delay_until: Optional[float] = None
    lock_token: Optional[str] = None
    result: Any = None

    @property
    def priority(self) -> int:
        return self.options.priority

    @property
    def max_attempts(self) -> int:
        return self.options.max_attempts

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def can_retry(self) -> bool:
        return self.attempts_made < self.options.max_attempts

    @property
    def next_retry_delay(self) -> float:
        return self.options.backoff.delay_for(self.attempts_made)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "queue_name": self.queue_name,
            "type": self.type,
            "payload": self.payload,
            "options": self.options.to_dict(),
            "state": self.state.value,
            "seq": self.seq,
            "attempts_made": self.attempts_made,
            "retry_count": self.retry_count,
            "stalled_count": self.stalled_count,
            "failed_reason": self.failed_reason,
            "created_at": self.created_at,
            "processed_at": self.processed_at,
            "finished_on": self.finished_on,
            "delay_until": self.delay_until,
            "lock_token": self.lock_token,
            "result": self.result,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Job":
        return cls(
            id=str(data["id"]),
            queue_name=data["queue_name"],
            type=data["type"],
            payload=data.get("payload") or {},
            options=JobOptions.from_dict(data.get("options") or {}),
            state=JobState(data.get("state", "waiting")),
            seq=int(data.get("seq", 0)),
            attempts_made=int(data.get("attempts_made", 0)),
            retry_count=int(data.get("retry_count", 0)),
            stalled_count=int(data.get("stalled_count", 0)),
            failed_reason=data.get("failed_reason"),
            created_at=float(data["created_at"]),
            processed_at=data.get("processed_at"),
            finished_on=data.get("finished_on"),
            delay_until=data.get("delay_until"),
            lock_token=data.get("lock_token"),
            result=data.get("result"),
        )


def validate_job_request(job_type: Any, payload: Any) -> Dict[str, Any]:
    """Check type and payload before anything is persisted."""
    if not isinstance(job_type, str) or not job_type.strip():
        raise ValidationError("Job type must be a non-empty string")
    if not isinstance(payload, Mapping):
        raise ValidationError("Job payload must be a mapping")
    try:
        # Round-trip so the stored payload is plain JSON data
        return json.loads(json.dumps(dict(payload)))
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Job payload is not serializable: {e}") from e


def create_job(
    queue_name: str,
    job_type: str,
    payload: Dict[str, Any],
    options: Optional[JobOptions] = None,
    *,
    job_id: str,
    seq: int = 0,
    now: Optional[float] = None,
) -> Job:
    """Create a new job in its initial state."""
    payload = validate_job_request(job_type, payload)
    options = options or JobOptions()
    now = time.time() if now is None else now

    job = Job(
        id=job_id,
        queue_name=queue_name,
        type=job_type,
        payload=payload,
        options=options,
        seq=seq,
        created_at=now,
    )
    if options.delay_seconds > 0:
        job.state = JobState.DELAYED
        job.delay_until = now + options.delay_seconds
    return job


@dataclass
class QueueStats:
    """Job counts per state for a queue."""
    queue_name: str
    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0

    @property
    def total(self) -> int:
        return self.waiting + self.active + self.completed + self.failed + self.delayed

    def to_dict(self) -> Dict[str, int]:
        return {
            "waiting": self.waiting,
            "active": self.active,
            "completed": self.completed,
            "failed": self.failed,
            "delayed": self.delayed,
        }


class JobQueue(ABC):
    """Abstract base class for a named, durable job queue."""

    def __init__(
        self,
        name: str,
        *,
        default_options: Optional[JobOptions] = None,
        lease_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        if not name:
            raise ValueError("queue name is empty")
        self._name = name
        self._default_options = default_options or JobOptions()
        self._lease_seconds = lease_seconds
        self._clock = clock

    @property
    def name(self) -> str:
        return self._name

    @property
    def lease_seconds(self) -> float:
        return self._lease_seconds

    @property
    def default_options(self) -> JobOptions:
        return copy.deepcopy(self._default_options)

    def _resolve_options(self, options: Optional[JobOptions]) -> JobOptions:
        return options if options is not None else copy.deepcopy(self._default_options)

    @abstractmethod
    async def enqueue(
        self,
        job_type: str,
        payload: Mapping[str, Any],
        options: Optional[JobOptions] = None,
    ) -> str:
        """Persist a new job and return its id."""

    @abstractmethod
    async def fetch_next(self, limit: int = 1) -> List[Job]:
        """Claim up to `limit` eligible jobs, moving them to active."""

    @abstractmethod
    async def mark_completed(self, job: Job, result: Any = None) -> Job:
        """Move an active job to completed."""

    @abstractmethod
    async def mark_failed(
        self,
        job: Job,
        error: str,
        *,
        retryable: bool = True,
        count_attempt: bool = True,
    ) -> Job:
        """Record a failed attempt; schedules a retry or moves to failed."""

    @abstractmethod
    async def extend_lease(self, job: Job) -> bool:
        """Push back the stall deadline of an active job this worker holds."""

    @abstractmethod
    async def recover_stalled(self) -> List[str]:
        """Return active jobs with expired leases to waiting."""

    @abstractmethod
    async def pause(self) -> None:
        pass

    @abstractmethod
    async def resume(self) -> None:
        pass

    @abstractmethod
    async def is_paused(self) -> bool:
        pass

    @abstractmethod
    async def get_stats(self) -> QueueStats:
        pass

    @abstractmethod
    async def get_failed(self, offset: int = 0, count: int = 10) -> List[Job]:
        """Failed jobs, most recently finished first."""

    @abstractmethod
    async def get_job(self, job_id: str) -> Optional[Job]:
        pass

    @abstractmethod
    async def retry(self, job_id: str) -> bool:
        """Move a failed job back to waiting. False if not found or not failed."""

    async def retry_all(self) -> int:
        """Retry every failed job; returns how many were moved."""
        retried = 0
        offset = 0
        batch = 100
        while True:
            jobs = await self.get_failed(offset, batch)
            if not jobs:
                break
            moved = 0
            for job in jobs:
                if await self.retry(job.id):
                    moved += 1
            retried += moved
            # Retried jobs leave the failed set, anything left shifts down
            offset += len(jobs) - moved
        return retried

    @abstractmethod
    async def clean(
        self,
        older_than_seconds: float,
        states: Iterable[JobState],
    ) -> int:
        """Delete completed/failed records finished before now - older_than."""

    async def close(self) -> None:
        pass


def check_clean_states(states: Iterable[JobState]) -> List[JobState]:
    resolved = [JobState(s) for s in states]
    for state in resolved:
        if state not in TERMINAL_STATES:
            raise ValidationError(f"Cannot clean jobs in state '{state.value}'")
    return resolved


@dataclass(frozen=True)
class HandlerResult:
    """Outcome of a handler: a success value or a typed failure."""
    ok: bool
    value: Any = None
    error: Optional[JobQueueError] = None

    @classmethod
    def success(cls, value: Any = None) -> "HandlerResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, error: JobQueueError) -> "HandlerResult":
        return cls(ok=False, error=error)

    @property
    def retryable(self) -> bool:
        return bool(self.error is not None and self.error.retryable)


class JobContext:
    """What a handler sees of the job it runs."""

    def __init__(
        self,
        job: Job,
        on_progress: Optional[Callable[[Job, str], None]] = None,
    ):
        self.job = job
        self.payload: Mapping[str, Any] = MappingProxyType(copy.deepcopy(job.payload))
        self._on_progress = on_progress

    def progress(self, stage: str) -> None:
        if self._on_progress is not None:
            self._on_progress(self.job, stage)


class JobHandler(ABC):
    """Abstract base class for job handlers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Job type this handler serves."""
        pass

    @abstractmethod
    async def handle(self, ctx: JobContext) -> HandlerResult:
        """Handle a job."""
        pass


class FunctionHandler(JobHandler):
    """Job handler from a function.

    Return values become a success; raised exceptions become a retryable
    delivery failure unless they already are a queue error.
    """

    def __init__(
        self,
        handler_name: str,
        func: Callable[[JobContext], Any],
    ):
        self._name = handler_name
        self._func = func

    @property
    def name(self) -> str:
        return self._name

    async def handle(self, ctx: JobContext) -> HandlerResult:
        try:
            if asyncio.iscoroutinefunction(self._func):
                value = await self._func(ctx)
            else:
                value = self._func(ctx)
        except JobQueueError as e:
            return HandlerResult.failure(e)
        except Exception as e:
            return HandlerResult.failure(DeliveryError(str(e) or type(e).__name__))
        if isinstance(value, HandlerResult):
            return value
        return HandlerResult.success(value)


class HandlerRegistry:
    """Registry for job handlers keyed by job type."""

    def __init__(self):
        self._handlers: Dict[str, JobHandler] = {}

    def register(self, handler: JobHandler) -> None:
        """Register a handler."""
        self._handlers[handler.name] = handler

    def register_function(
        self,
        name: str,
        func: Callable[[JobContext], Any],
    ) -> None:
        """Register a function as handler."""
        self._handlers[name] = FunctionHandler(name, func)

    def get(self, name: str) -> Optional[JobHandler]:
        """Get handler by job type."""
        return self._handlers.get(name)

    def resolve(self, name: str) -> JobHandler:
        handler = self._handlers.get(name)
        if handler is None:
            raise HandlerNotFoundError(name)
        return handler

    def handler(self, name: str):
        """Decorator to register a function as handler."""
        def decorator(func: Callable[[JobContext], Any]):
            self.register_function(name, func)
            return func
        return decorator

    @property
    def handlers(self) -> Dict[str, JobHandler]:
        return self._handlers.copy()

    @property
    def types(self) -> List[str]:
        return sorted(self._handlers)
