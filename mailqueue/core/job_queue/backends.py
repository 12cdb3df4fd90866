"""Job Queue Backends.

Provides queue implementations:
- In-memory queue (testing, local development)
- Redis-based queue (production)

Both order waiting jobs by (priority, sequence): lower priority number
first, FIFO within a priority.
"""

from __future__ import annotations

import asyncio
import copy
import heapq
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

from redis.exceptions import RedisError

from mailqueue.core.errors import (
    JobNotFoundError,
    JobQueueError,
    QueueUnavailableError,
    StalledJobError,
)
from mailqueue.core.job_queue.core import (
    PRIORITY_SCALE,
    BackoffPolicy,
    BackoffType,
    Job,
    JobOptions,
    JobQueue,
    JobState,
    QueueStats,
    check_clean_states,
    create_job,
    validate_job_request,
)

logger = logging.getLogger(__name__)


def _plain(value: Any) -> Any:
    """Reduce a handler result to JSON data, as the durable store keeps it."""
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


class InMemoryJobQueue(JobQueue):
    """In-memory job queue for testing."""

    def __init__(self, name: str = "email", **kwargs: Any):
        super().__init__(name, **kwargs)
        self._jobs: Dict[str, Job] = {}
        # (priority, seq, job_id)
        self._waiting: List[Tuple[int, int, str]] = []
        self._delayed: Dict[str, float] = {}  # job_id -> delay_until
        self._active: Dict[str, float] = {}  # job_id -> lease deadline
        # job_id -> (finished_on, finish order)
        self._finished: Dict[JobState, Dict[str, Tuple[float, int]]] = {
            JobState.COMPLETED: {},
            JobState.FAILED: {},
        }
        self._finish_counter = 0
        self._next_id = 0
        self._paused = False
        self._lock: Optional[asyncio.Lock] = None

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    @staticmethod
    def _snapshot(job: Job) -> Job:
        return Job.from_dict(copy.deepcopy(job.to_dict()))

    def _move(self, job: Job, target: JobState, now: float) -> None:
        """Apply a state transition and keep the per-state indexes in step."""
        if not job.state.can_transition_to(target):
            raise JobQueueError(
                f"Invalid transition for job {job.id}: {job.state.value} -> {target.value}"
            )

        # Waiting entries leave the heap when popped by a claim
        self._delayed.pop(job.id, None)
        self._active.pop(job.id, None)
        for index in self._finished.values():
            index.pop(job.id, None)

        job.state = target
        if target == JobState.WAITING:
            heapq.heappush(self._waiting, (job.priority, job.seq, job.id))
        elif target == JobState.DELAYED:
            self._delayed[job.id] = job.delay_until or now
        elif target == JobState.ACTIVE:
            self._active[job.id] = now + self._lease_seconds
        else:
            self._finish_counter += 1
            self._finished[target][job.id] = (job.finished_on or now, self._finish_counter)

    async def enqueue(
        self,
        job_type: str,
        payload: Any,
        options: Optional[JobOptions] = None,
    ) -> str:
        payload = validate_job_request(job_type, payload)
        options = self._resolve_options(options)

        async with self._get_lock():
            self._next_id += 1
            job = create_job(
                self._name,
                job_type,
                payload,
                options,
                job_id=str(self._next_id),
                seq=self._next_id,
                now=self._clock(),
            )
            self._jobs[job.id] = job

            if job.state == JobState.DELAYED:
                self._delayed[job.id] = job.delay_until or job.created_at
            else:
                heapq.heappush(self._waiting, (job.priority, job.seq, job.id))

            logger.debug(
                "Enqueued job %s (%s)", job.id, job_type,
                extra={"queue": self._name, "job_id": job.id, "job_type": job_type},
            )
            return job.id

    def _promote_delayed(self, now: float) -> None:
        """Move due delayed jobs to waiting."""
        for job_id, due in list(self._delayed.items()):
            if due <= now:
                self._move(self._jobs[job_id], JobState.WAITING, now)

    def _recover_stalled_locked(self, now: float) -> List[str]:
        recovered = []
        for job_id, deadline in list(self._active.items()):
            if deadline <= now:
                job = self._jobs[job_id]
                job.lock_token = None
                job.stalled_count += 1
                self._move(job, JobState.WAITING, now)
                recovered.append(job_id)
                logger.warning(
                    "Job %s stalled, returned to waiting", job_id,
                    extra={"queue": self._name, "job_id": job_id, "state": "waiting"},
                )
        return recovered

    async def recover_stalled(self) -> List[str]:
        async with self._get_lock():
            return self._recover_stalled_locked(self._clock())

    async def fetch_next(self, limit: int = 1) -> List[Job]:
        if limit < 1:
            return []

        async with self._get_lock():
            now = self._clock()
            self._recover_stalled_locked(now)
            if self._paused:
                return []

            self._promote_delayed(now)

            claimed: List[Job] = []
            while self._waiting and len(claimed) < limit:
                _, _, job_id = heapq.heappop(self._waiting)
                job = self._jobs.get(job_id)
                if job is None or job.state != JobState.WAITING:
                    continue

                job.processed_at = now
                job.lock_token = uuid.uuid4().hex
                self._move(job, JobState.ACTIVE, now)
                claimed.append(self._snapshot(job))

            return claimed

    def _held(self, job: Job) -> Job:
        """The stored record of a job the caller claims to hold a lease on."""
        stored = self._jobs.get(job.id)
        if stored is None:
            raise JobNotFoundError(job.id)
        if stored.state != JobState.ACTIVE or stored.lock_token != job.lock_token:
            raise StalledJobError(job.id)
        return stored

    async def mark_completed(self, job: Job, result: Any = None) -> Job:
        async with self._get_lock():
            stored = self._held(job)
            now = self._clock()

            stored.attempts_made = min(stored.attempts_made + 1, stored.max_attempts)
            stored.finished_on = now
            stored.result = _plain(result)
            stored.lock_token = None
            self._move(stored, JobState.COMPLETED, now)

            logger.debug(f"Job {job.id} completed")
            return self._snapshot(stored)

    async def mark_failed(
        self,
        job: Job,
        error: str,
        *,
        retryable: bool = True,
        count_attempt: bool = True,
    ) -> Job:
        async with self._get_lock():
            stored = self._held(job)
            now = self._clock()

            if count_attempt:
                stored.attempts_made = min(stored.attempts_made + 1, stored.max_attempts)
            stored.failed_reason = error
            stored.lock_token = None

            if retryable and stored.can_retry:
                stored.delay_until = now + stored.next_retry_delay
                self._move(stored, JobState.DELAYED, now)
                logger.debug(f"Job {job.id} scheduled for retry at {stored.delay_until}")
            else:
                stored.finished_on = now
                self._move(stored, JobState.FAILED, now)
                logger.debug(f"Job {job.id} moved to failed")

            return self._snapshot(stored)

    async def extend_lease(self, job: Job) -> bool:
        async with self._get_lock():
            stored = self._jobs.get(job.id)
            if (
                stored is None
                or stored.state != JobState.ACTIVE
                or stored.lock_token != job.lock_token
            ):
                return False
            self._active[job.id] = self._clock() + self._lease_seconds
            return True

    async def pause(self) -> None:
        self._paused = True

    async def resume(self) -> None:
        self._paused = False

    async def is_paused(self) -> bool:
        return self._paused

    async def get_stats(self) -> QueueStats:
        async with self._get_lock():
            stats = QueueStats(queue_name=self._name)
            for job in self._jobs.values():
                setattr(stats, job.state.value, getattr(stats, job.state.value) + 1)
            return stats

    async def get_failed(self, offset: int = 0, count: int = 10) -> List[Job]:
        async with self._get_lock():
            ordered = sorted(
                self._finished[JobState.FAILED].items(),
                key=lambda item: item[1],
                reverse=True,
            )
            return [
                self._snapshot(self._jobs[job_id])
                for job_id, _ in ordered[max(offset, 0):max(offset, 0) + max(count, 0)]
            ]

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self._get_lock():
            job = self._jobs.get(str(job_id))
            return self._snapshot(job) if job else None

    async def retry(self, job_id: str) -> bool:
        async with self._get_lock():
            job = self._jobs.get(str(job_id))
            if not job or job.state != JobState.FAILED:
                return False

            job.retry_count += 1
            job.finished_on = None
            job.delay_until = None
            self._move(job, JobState.WAITING, self._clock())

            logger.debug(f"Failed job {job_id} re-queued")
            return True

    async def clean(
        self,
        older_than_seconds: float,
        states: Iterable[JobState],
    ) -> int:
        resolved = check_clean_states(states)
        async with self._get_lock():
            cutoff = self._clock() - older_than_seconds
            removed = 0
            for state in resolved:
                index = self._finished[state]
                for job_id, (finished_on, _) in list(index.items()):
                    if finished_on <= cutoff:
                        del index[job_id]
                        del self._jobs[job_id]
                        removed += 1
            return removed


# All scripts receive the job hash key prefix so they can address
# individual jobs; each one runs atomically on the Redis server.

_LUA_CLAIM = """
local now = ARGV[1]
local limit = tonumber(ARGV[2])
local lease_deadline = ARGV[3]
local prefix = ARGV[4]
local token = ARGV[5]

if redis.call('EXISTS', KEYS[4]) == 1 then
    return {}
end

-- Promote due delayed jobs
local due = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', now)
for _, id in ipairs(due) do
    redis.call('ZREM', KEYS[2], id)
    local score = redis.call('HGET', prefix .. id, 'score')
    if score then
        redis.call('ZADD', KEYS[1], score, id)
        redis.call('HSET', prefix .. id, 'state', 'waiting')
    end
end

local ids = redis.call('ZRANGE', KEYS[1], 0, limit - 1)
for _, id in ipairs(ids) do
    redis.call('ZREM', KEYS[1], id)
    redis.call('ZADD', KEYS[3], lease_deadline, id)
    redis.call('HSET', prefix .. id,
        'state', 'active', 'processed_at', now, 'lock_token', token .. ':' .. id)
end
return ids
"""

_LUA_RECOVER_STALLED = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, id in ipairs(ids) do
    redis.call('ZREM', KEYS[1], id)
    local score = redis.call('HGET', ARGV[2] .. id, 'score')
    if score then
        redis.call('ZADD', KEYS[2], score, id)
        redis.call('HSET', ARGV[2] .. id, 'state', 'waiting', 'lock_token', '')
        redis.call('HINCRBY', ARGV[2] .. id, 'stalled_count', 1)
    end
end
return ids
"""

_LUA_COMPLETE = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
local f = redis.call('HMGET', KEYS[1], 'state', 'lock_token', 'attempts_made', 'max_attempts')
if f[1] ~= 'active' or f[2] ~= ARGV[1] then
    return 0
end
local attempts = math.min(tonumber(f[3]) + 1, tonumber(f[4]))
redis.call('ZREM', KEYS[2], ARGV[4])
redis.call('ZADD', KEYS[3], ARGV[2], ARGV[4])
redis.call('HSET', KEYS[1],
    'state', 'completed', 'attempts_made', attempts, 'finished_on', ARGV[2],
    'lock_token', '', 'result', ARGV[3])
return 1
"""

_LUA_FAIL = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return -1
end
local f = redis.call('HMGET', KEYS[1],
    'state', 'lock_token', 'attempts_made', 'max_attempts', 'backoff_type', 'backoff_delay')
if f[1] ~= 'active' or f[2] ~= ARGV[1] then
    return 0
end
local attempts = tonumber(f[3])
local max_attempts = tonumber(f[4])
if ARGV[6] == '1' then
    attempts = math.min(attempts + 1, max_attempts)
end
redis.call('ZREM', KEYS[2], ARGV[4])

if ARGV[5] == '1' and attempts < max_attempts then
    local delay = tonumber(f[6])
    if f[5] ~= 'fixed' then
        delay = delay * (2 ^ math.max(attempts - 1, 0))
    end
    local due = string.format('%.6f', tonumber(ARGV[2]) + delay)
    redis.call('ZADD', KEYS[3], due, ARGV[4])
    redis.call('HSET', KEYS[1],
        'state', 'delayed', 'attempts_made', attempts, 'failed_reason', ARGV[3],
        'delay_until', due, 'lock_token', '')
    return 1
end

redis.call('ZADD', KEYS[4], ARGV[2], ARGV[4])
redis.call('HSET', KEYS[1],
    'state', 'failed', 'attempts_made', attempts, 'failed_reason', ARGV[3],
    'finished_on', ARGV[2], 'lock_token', '')
return 2
"""

_LUA_EXTEND_LEASE = """
local f = redis.call('HMGET', KEYS[1], 'state', 'lock_token')
if f[1] ~= 'active' or f[2] ~= ARGV[1] then
    return 0
end
redis.call('ZADD', KEYS[2], 'XX', ARGV[2], ARGV[3])
return 1
"""

_LUA_RETRY = """
local f = redis.call('HMGET', KEYS[1], 'state', 'score')
if f[1] ~= 'failed' then
    return 0
end
redis.call('ZREM', KEYS[2], ARGV[1])
redis.call('ZADD', KEYS[3], f[2], ARGV[1])
redis.call('HSET', KEYS[1], 'state', 'waiting', 'finished_on', '', 'delay_until', '')
redis.call('HINCRBY', KEYS[1], 'retry_count', 1)
return 1
"""

_LUA_CLEAN = """
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[4]))
local removed = 0
for _, id in ipairs(ids) do
    redis.call('ZREM', KEYS[1], id)
    if redis.call('HGET', ARGV[2] .. id, 'state') == ARGV[3] then
        redis.call('DEL', ARGV[2] .. id)
        removed = removed + 1
    end
end
return {removed, #ids}
"""

_SCRIPTS = {
    "claim": _LUA_CLAIM,
    "recover_stalled": _LUA_RECOVER_STALLED,
    "complete": _LUA_COMPLETE,
    "fail": _LUA_FAIL,
    "extend_lease": _LUA_EXTEND_LEASE,
    "retry": _LUA_RETRY,
    "clean": _LUA_CLEAN,
}

_CLEAN_BATCH = 500


def _to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return str(value)


def _hgetall_str(data: Dict[Any, Any]) -> Dict[str, str]:
    return {_to_str(k): _to_str(v) for k, v in data.items()}


def _fmt_ts(value: Optional[float]) -> str:
    return "" if value is None else f"{value:.6f}"


def _maybe_float(value: Any) -> Optional[float]:
    s = _to_str(value).strip()
    if not s:
        return None
    return float(s)


def _score(job: Job) -> int:
    return job.priority * PRIORITY_SCALE + job.seq


def encode_job(job: Job) -> Dict[str, str]:
    """Flatten a job into the string fields of its Redis hash."""
    return {
        "id": job.id,
        "queue_name": job.queue_name,
        "type": job.type,
        "payload": json.dumps(job.payload),
        "options": json.dumps(job.options.to_dict()),
        # Denormalized for the Lua scripts
        "priority": str(job.priority),
        "score": str(_score(job)),
        "max_attempts": str(job.max_attempts),
        "backoff_type": job.options.backoff.type.value,
        "backoff_delay": repr(float(job.options.backoff.delay_seconds)),
        "state": job.state.value,
        "seq": str(job.seq),
        "attempts_made": str(job.attempts_made),
        "retry_count": str(job.retry_count),
        "stalled_count": str(job.stalled_count),
        "failed_reason": job.failed_reason or "",
        "created_at": _fmt_ts(job.created_at),
        "processed_at": _fmt_ts(job.processed_at),
        "finished_on": _fmt_ts(job.finished_on),
        "delay_until": _fmt_ts(job.delay_until),
        "lock_token": job.lock_token or "",
        "result": json.dumps(job.result) if job.result is not None else "",
    }


def decode_job(raw: Dict[Any, Any]) -> Job:
    """Rebuild a job from its Redis hash."""
    data = _hgetall_str(raw)
    options = JobOptions.from_dict(json.loads(data.get("options") or "{}"))
    result_raw = data.get("result") or ""
    return Job(
        id=data["id"],
        queue_name=data.get("queue_name", ""),
        type=data.get("type", ""),
        payload=json.loads(data.get("payload") or "{}"),
        options=options,
        state=JobState(data.get("state") or JobState.WAITING.value),
        seq=int(data.get("seq") or 0),
        attempts_made=int(data.get("attempts_made") or 0),
        retry_count=int(data.get("retry_count") or 0),
        stalled_count=int(data.get("stalled_count") or 0),
        failed_reason=data.get("failed_reason") or None,
        created_at=_maybe_float(data.get("created_at")) or 0.0,
        processed_at=_maybe_float(data.get("processed_at")),
        finished_on=_maybe_float(data.get("finished_on")),
        delay_until=_maybe_float(data.get("delay_until")),
        lock_token=data.get("lock_token") or None,
        result=json.loads(result_raw) if result_raw else None,
    )


class RedisJobQueue(JobQueue):
    """Redis-based job queue.

    Layout under `{key_prefix}:{queue}`:
      - `:id`                 job id / sequence counter
      - `:job:{id}`           job hash
      - `:waiting`            zset, score = priority * 2**32 + seq
      - `:delayed`            zset, score = delay_until
      - `:active`             zset, score = lease deadline
      - `:completed/:failed`  zset, score = finished_on
      - `:paused`             flag
    """

    def __init__(
        self,
        redis_client: Any,
        name: str = "email",
        *,
        key_prefix: str = "mailqueue",
        **kwargs: Any,
    ):
        super().__init__(name, **kwargs)
        self._redis = redis_client
        self._prefix = f"{key_prefix}:{name}"
        self._scripts: Dict[str, Any] = {}

    def _key(self, suffix: str) -> str:
        return f"{self._prefix}:{suffix}"

    def _job_prefix(self) -> str:
        return self._key("job:")

    def _job_key(self, job_id: str) -> str:
        return f"{self._job_prefix()}{job_id}"

    def _state_key(self, state: JobState) -> str:
        return self._key(state.value)

    def _script(self, name: str) -> Any:
        if name not in self._scripts:
            self._scripts[name] = self._redis.register_script(_SCRIPTS[name])
        return self._scripts[name]

    @asynccontextmanager
    async def _store_call(self, op: str) -> AsyncIterator[None]:
        try:
            yield
        except RedisError as e:
            # READONLY replicas and OOM rejections count as unavailable too
            logger.error(
                f"Redis {op} error: {e}",
                extra={"queue": self._name, "error_code": "QUEUE_UNAVAILABLE"},
            )
            raise QueueUnavailableError(f"Queue store unavailable during {op}: {e}") from e

    async def ping(self) -> bool:
        async with self._store_call("ping"):
            return bool(await self._redis.ping())

    async def enqueue(
        self,
        job_type: str,
        payload: Any,
        options: Optional[JobOptions] = None,
    ) -> str:
        payload = validate_job_request(job_type, payload)
        options = self._resolve_options(options)

        async with self._store_call("enqueue"):
            seq = int(await self._redis.incr(self._key("id")))
            job = create_job(
                self._name,
                job_type,
                payload,
                options,
                job_id=str(seq),
                seq=seq,
                now=self._clock(),
            )

            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(self._job_key(job.id), mapping=encode_job(job))
                if job.state == JobState.DELAYED:
                    pipe.zadd(self._state_key(JobState.DELAYED), {job.id: job.delay_until})
                else:
                    pipe.zadd(self._state_key(JobState.WAITING), {job.id: _score(job)})
                await pipe.execute()

        logger.debug(
            "Enqueued job %s (%s)", job.id, job_type,
            extra={"queue": self._name, "job_id": job.id, "job_type": job_type},
        )
        return job.id

    async def _load_jobs(self, job_ids: List[Any]) -> List[Job]:
        ids = [_to_str(job_id) for job_id in job_ids]
        if not ids:
            return []
        async with self._redis.pipeline(transaction=False) as pipe:
            for job_id in ids:
                pipe.hgetall(self._job_key(job_id))
            rows = await pipe.execute()
        return [decode_job(row) for row in rows if row]

    async def recover_stalled(self) -> List[str]:
        now = self._clock()
        async with self._store_call("recover_stalled"):
            raw_ids = await self._script("recover_stalled")(
                keys=[self._state_key(JobState.ACTIVE), self._state_key(JobState.WAITING)],
                args=[_fmt_ts(now), self._job_prefix()],
            )
        recovered = [_to_str(job_id) for job_id in raw_ids]
        for job_id in recovered:
            logger.warning(
                "Job %s stalled, returned to waiting", job_id,
                extra={"queue": self._name, "job_id": job_id, "state": "waiting"},
            )
        return recovered

    async def fetch_next(self, limit: int = 1) -> List[Job]:
        if limit < 1:
            return []

        await self.recover_stalled()
        now = self._clock()
        async with self._store_call("fetch_next"):
            raw_ids = await self._script("claim")(
                keys=[
                    self._state_key(JobState.WAITING),
                    self._state_key(JobState.DELAYED),
                    self._state_key(JobState.ACTIVE),
                    self._key("paused"),
                ],
                args=[
                    _fmt_ts(now),
                    limit,
                    _fmt_ts(now + self._lease_seconds),
                    self._job_prefix(),
                    uuid.uuid4().hex,
                ],
            )
            return await self._load_jobs(raw_ids)

    def _check_fenced(self, status: int, job: Job) -> None:
        if status == -1:
            raise JobNotFoundError(job.id)
        if status == 0:
            raise StalledJobError(job.id)

    async def _reload(self, job: Job) -> Job:
        stored = await self.get_job(job.id)
        if stored is None:
            raise JobNotFoundError(job.id)
        return stored

    async def mark_completed(self, job: Job, result: Any = None) -> Job:
        now = self._clock()
        result_json = json.dumps(_plain(result)) if result is not None else ""
        async with self._store_call("mark_completed"):
            status = await self._script("complete")(
                keys=[
                    self._job_key(job.id),
                    self._state_key(JobState.ACTIVE),
                    self._state_key(JobState.COMPLETED),
                ],
                args=[job.lock_token or "", _fmt_ts(now), result_json, job.id],
            )
        self._check_fenced(int(status), job)
        logger.debug(f"Job {job.id} completed")
        return await self._reload(job)

    async def mark_failed(
        self,
        job: Job,
        error: str,
        *,
        retryable: bool = True,
        count_attempt: bool = True,
    ) -> Job:
        now = self._clock()
        async with self._store_call("mark_failed"):
            status = await self._script("fail")(
                keys=[
                    self._job_key(job.id),
                    self._state_key(JobState.ACTIVE),
                    self._state_key(JobState.DELAYED),
                    self._state_key(JobState.FAILED),
                ],
                args=[
                    job.lock_token or "",
                    _fmt_ts(now),
                    error,
                    job.id,
                    "1" if retryable else "0",
                    "1" if count_attempt else "0",
                ],
            )
        self._check_fenced(int(status), job)
        logger.debug(
            f"Job {job.id} {'scheduled for retry' if int(status) == 1 else 'moved to failed'}"
        )
        return await self._reload(job)

    async def extend_lease(self, job: Job) -> bool:
        deadline = self._clock() + self._lease_seconds
        async with self._store_call("extend_lease"):
            extended = await self._script("extend_lease")(
                keys=[self._job_key(job.id), self._state_key(JobState.ACTIVE)],
                args=[job.lock_token or "", _fmt_ts(deadline), job.id],
            )
        return bool(int(extended))

    async def pause(self) -> None:
        async with self._store_call("pause"):
            await self._redis.set(self._key("paused"), "1")

    async def resume(self) -> None:
        async with self._store_call("resume"):
            await self._redis.delete(self._key("paused"))

    async def is_paused(self) -> bool:
        async with self._store_call("is_paused"):
            return bool(await self._redis.exists(self._key("paused")))

    async def get_stats(self) -> QueueStats:
        states = [
            JobState.WAITING,
            JobState.ACTIVE,
            JobState.COMPLETED,
            JobState.FAILED,
            JobState.DELAYED,
        ]
        async with self._store_call("get_stats"):
            async with self._redis.pipeline(transaction=True) as pipe:
                for state in states:
                    pipe.zcard(self._state_key(state))
                counts = await pipe.execute()
        stats = QueueStats(queue_name=self._name)
        for state, count in zip(states, counts):
            setattr(stats, state.value, int(count))
        return stats

    async def get_failed(self, offset: int = 0, count: int = 10) -> List[Job]:
        if count < 1:
            return []
        offset = max(offset, 0)
        async with self._store_call("get_failed"):
            job_ids = await self._redis.zrevrange(
                self._state_key(JobState.FAILED),
                offset,
                offset + count - 1,
            )
            return await self._load_jobs(job_ids)

    async def get_job(self, job_id: str) -> Optional[Job]:
        async with self._store_call("get_job"):
            raw = await self._redis.hgetall(self._job_key(str(job_id)))
        if not raw:
            return None
        return decode_job(raw)

    async def retry(self, job_id: str) -> bool:
        job_id = str(job_id)
        async with self._store_call("retry"):
            moved = await self._script("retry")(
                keys=[
                    self._job_key(job_id),
                    self._state_key(JobState.FAILED),
                    self._state_key(JobState.WAITING),
                ],
                args=[job_id],
            )
        if int(moved):
            logger.debug(f"Failed job {job_id} re-queued")
        return bool(int(moved))

    async def clean(
        self,
        older_than_seconds: float,
        states: Iterable[JobState],
    ) -> int:
        resolved = check_clean_states(states)
        cutoff = _fmt_ts(self._clock() - older_than_seconds)
        removed = 0
        async with self._store_call("clean"):
            for state in resolved:
                while True:
                    batch_removed, scanned = await self._script("clean")(
                        keys=[self._state_key(state)],
                        args=[cutoff, self._job_prefix(), state.value, _CLEAN_BATCH],
                    )
                    removed += int(batch_removed)
                    if int(scanned) < _CLEAN_BATCH:
                        break
        return removed


__all__ = [
    "InMemoryJobQueue",
    "RedisJobQueue",
    "encode_job",
    "decode_job",
    "BackoffPolicy",
    "BackoffType",
]
