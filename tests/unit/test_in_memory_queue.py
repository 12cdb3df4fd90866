"""Queue semantics, exercised on the in-memory backend with a fake clock."""

import asyncio

import pytest

from mailqueue.core.errors import JobNotFoundError, StalledJobError, ValidationError
from mailqueue.core.job_queue import BackoffPolicy, BackoffType, Job, JobOptions, JobState


async def _claim_one(queue):
    jobs = await queue.fetch_next(1)
    assert len(jobs) == 1
    return jobs[0]


class TestEnqueueAndFetch:
    @pytest.mark.asyncio
    async def test_enqueue_assigns_increasing_ids(self, queue):
        first = await queue.enqueue("welcome", {"email": "a@example.com"})
        second = await queue.enqueue("welcome", {"email": "b@example.com"})

        assert int(second) > int(first)
        stats = await queue.get_stats()
        assert stats.waiting == 2
        assert stats.total == 2

    @pytest.mark.asyncio
    async def test_invalid_request_not_persisted(self, queue):
        with pytest.raises(ValidationError):
            await queue.enqueue("", {})
        with pytest.raises(ValidationError):
            await queue.enqueue("welcome", {"bad": object()})
        assert (await queue.get_stats()).total == 0

    @pytest.mark.asyncio
    async def test_priority_then_fifo(self, queue):
        ids = {}
        for name, priority in [("a", 2), ("b", 0), ("c", 1), ("d", 0)]:
            ids[name] = await queue.enqueue("welcome", {"n": name}, JobOptions(priority=priority))

        jobs = await queue.fetch_next(4)

        assert [job.payload["n"] for job in jobs] == ["b", "d", "c", "a"]
        assert all(job.state == JobState.ACTIVE for job in jobs)
        assert all(job.lock_token for job in jobs)

    @pytest.mark.asyncio
    async def test_fetch_sets_processed_at_and_respects_limit(self, queue, clock):
        for _ in range(3):
            await queue.enqueue("welcome", {})

        jobs = await queue.fetch_next(2)

        assert len(jobs) == 2
        assert jobs[0].processed_at == clock.now
        stats = await queue.get_stats()
        assert (stats.active, stats.waiting) == (2, 1)
        assert await queue.fetch_next(0) == []

    @pytest.mark.asyncio
    async def test_delayed_job_not_eligible_early(self, queue, clock):
        job_id = await queue.enqueue("welcome", {}, JobOptions(delay_seconds=10))

        assert (await queue.get_job(job_id)).state == JobState.DELAYED
        clock.advance(9)
        assert await queue.fetch_next(1) == []

        clock.advance(1)
        jobs = await queue.fetch_next(1)
        assert [job.id for job in jobs] == [job_id]

    @pytest.mark.asyncio
    async def test_concurrent_fetchers_never_share_a_job(self, queue):
        for _ in range(3):
            await queue.enqueue("welcome", {})

        batches = await asyncio.gather(*(queue.fetch_next(1) for _ in range(5)))

        claimed = [job.id for batch in batches for job in batch]
        assert len(claimed) == 3
        assert len(set(claimed)) == 3

    @pytest.mark.asyncio
    async def test_returned_jobs_are_copies(self, queue):
        job_id = await queue.enqueue("welcome", {"email": "a@example.com"})
        job = await _claim_one(queue)

        job.payload["email"] = "mutated@example.com"

        assert (await queue.get_job(job_id)).payload["email"] == "a@example.com"


class TestCompletionAndRetry:
    @pytest.mark.asyncio
    async def test_mark_completed(self, queue, clock):
        job_id = await queue.enqueue("welcome", {})
        job = await _claim_one(queue)
        clock.advance(1)

        done = await queue.mark_completed(job, {"message_id": "m-1"})

        assert done.state == JobState.COMPLETED
        assert done.attempts_made == 1
        assert done.finished_on == clock.now
        assert done.result == {"message_id": "m-1"}
        assert done.lock_token is None
        assert (await queue.get_job(job_id)).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_exponential_backoff_schedule(self, queue, clock):
        await queue.enqueue("welcome", {}, JobOptions(max_attempts=3))

        job = await _claim_one(queue)
        failed = await queue.mark_failed(job, "attempt 1")
        assert failed.state == JobState.DELAYED
        assert failed.attempts_made == 1
        assert failed.delay_until == clock.now + 2
        assert failed.failed_reason == "attempt 1"

        clock.advance(1.5)
        assert await queue.fetch_next(1) == []
        clock.advance(0.5)
        job = await _claim_one(queue)

        failed = await queue.mark_failed(job, "attempt 2")
        assert failed.attempts_made == 2
        assert failed.delay_until == clock.now + 4

        clock.advance(3.5)
        assert await queue.fetch_next(1) == []
        clock.advance(0.5)
        job = await _claim_one(queue)

        failed = await queue.mark_failed(job, "attempt 3")
        assert failed.state == JobState.FAILED
        assert failed.attempts_made == 3
        assert failed.failed_reason == "attempt 3"
        assert failed.finished_on == clock.now

    @pytest.mark.asyncio
    async def test_fixed_backoff(self, queue, clock):
        options = JobOptions(backoff=BackoffPolicy(type=BackoffType.FIXED, delay_seconds=5))
        await queue.enqueue("welcome", {}, options)

        job = await _claim_one(queue)
        await queue.mark_failed(job, "e1")
        clock.advance(5)
        job = await _claim_one(queue)
        failed = await queue.mark_failed(job, "e2")

        assert failed.delay_until == clock.now + 5

    @pytest.mark.asyncio
    async def test_non_retryable_failure_skips_backoff(self, queue):
        await queue.enqueue("welcome", {})
        job = await _claim_one(queue)

        failed = await queue.mark_failed(job, "bad payload", retryable=False)

        assert failed.state == JobState.FAILED
        assert failed.attempts_made == 1

    @pytest.mark.asyncio
    async def test_uncounted_failure_keeps_attempts(self, queue):
        await queue.enqueue("unknownType", {})
        job = await _claim_one(queue)

        failed = await queue.mark_failed(job, "No handler", retryable=False, count_attempt=False)

        assert failed.state == JobState.FAILED
        assert failed.attempts_made == 0

    @pytest.mark.asyncio
    async def test_retry_failed_job_preserves_attempts(self, queue):
        job_id = await queue.enqueue("welcome", {}, JobOptions(max_attempts=1))
        job = await _claim_one(queue)
        await queue.mark_failed(job, "boom")

        assert await queue.retry(job_id) is True

        retried = await queue.get_job(job_id)
        assert retried.state == JobState.WAITING
        assert retried.attempts_made == 1
        assert retried.retry_count == 1
        assert retried.finished_on is None
        assert [j.id for j in await queue.fetch_next(1)] == [job_id]

    @pytest.mark.asyncio
    async def test_retried_exhausted_job_gets_one_more_attempt(self, queue):
        job_id = await queue.enqueue("welcome", {}, JobOptions(max_attempts=1))
        await queue.mark_failed(await _claim_one(queue), "first")
        await queue.retry(job_id)

        failed = await queue.mark_failed(await _claim_one(queue), "second")

        assert failed.state == JobState.FAILED
        assert failed.attempts_made == 1
        assert failed.failed_reason == "second"

    @pytest.mark.asyncio
    async def test_retry_non_failed_job_is_noop(self, queue):
        job_id = await queue.enqueue("welcome", {})

        assert await queue.retry(job_id) is False
        assert await queue.retry("does-not-exist") is False
        assert (await queue.get_job(job_id)).state == JobState.WAITING

    @pytest.mark.asyncio
    async def test_retry_all(self, queue):
        for _ in range(3):
            await queue.enqueue("welcome", {}, JobOptions(max_attempts=1))
        for job in await queue.fetch_next(3):
            await queue.mark_failed(job, "boom")
        await queue.enqueue("welcome", {})

        assert await queue.retry_all() == 3

        stats = await queue.get_stats()
        assert (stats.failed, stats.waiting) == (0, 4)

    @pytest.mark.asyncio
    async def test_get_failed_most_recent_first(self, queue, clock):
        ids = []
        for _ in range(3):
            ids.append(await queue.enqueue("welcome", {}, JobOptions(max_attempts=1)))
        for job in await queue.fetch_next(3):
            clock.advance(1)
            await queue.mark_failed(job, f"boom {job.id}")

        newest_first = [job.id for job in await queue.get_failed(0, 10)]
        assert newest_first == list(reversed(ids))
        assert [job.id for job in await queue.get_failed(1, 1)] == [ids[1]]


class TestPause:
    @pytest.mark.asyncio
    async def test_pause_blocks_fetch_until_resume(self, queue):
        await queue.enqueue("welcome", {})
        await queue.pause()

        assert await queue.is_paused()
        assert await queue.fetch_next(5) == []

        await queue.resume()
        assert len(await queue.fetch_next(5)) == 1

    @pytest.mark.asyncio
    async def test_pause_does_not_affect_active_jobs(self, queue):
        await queue.enqueue("welcome", {})
        job = await _claim_one(queue)
        await queue.pause()

        done = await queue.mark_completed(job)

        assert done.state == JobState.COMPLETED


class TestLeases:
    @pytest.mark.asyncio
    async def test_stalled_job_is_reclaimed(self, queue, clock):
        job_id = await queue.enqueue("welcome", {})
        first = await _claim_one(queue)

        clock.advance(queue.lease_seconds + 1)
        second = await _claim_one(queue)

        assert second.id == job_id
        assert second.stalled_count == 1
        assert second.lock_token != first.lock_token

    @pytest.mark.asyncio
    async def test_stale_worker_cannot_report(self, queue, clock):
        await queue.enqueue("welcome", {})
        stale = await _claim_one(queue)
        clock.advance(queue.lease_seconds)
        assert await queue.recover_stalled() == [stale.id]

        with pytest.raises(StalledJobError):
            await queue.mark_completed(stale)

        fresh = await _claim_one(queue)
        with pytest.raises(StalledJobError):
            await queue.mark_failed(stale, "late")
        assert (await queue.mark_completed(fresh)).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_extend_lease_defers_stall(self, queue, clock):
        await queue.enqueue("welcome", {})
        job = await _claim_one(queue)

        clock.advance(20)
        assert await queue.extend_lease(job) is True
        clock.advance(20)

        assert await queue.recover_stalled() == []
        assert (await queue.get_job(job.id)).state == JobState.ACTIVE

    @pytest.mark.asyncio
    async def test_extend_lease_fails_after_reclaim(self, queue, clock):
        await queue.enqueue("welcome", {})
        job = await _claim_one(queue)
        clock.advance(queue.lease_seconds)
        await queue.recover_stalled()

        assert await queue.extend_lease(job) is False

    @pytest.mark.asyncio
    async def test_unknown_job_report(self, queue):
        ghost = Job.from_dict(
            {
                "id": "404",
                "queue_name": "email",
                "type": "welcome",
                "created_at": 0.0,
            }
        )
        with pytest.raises(JobNotFoundError):
            await queue.mark_completed(ghost)


class TestClean:
    @pytest.mark.asyncio
    async def test_clean_removes_only_old_terminal_jobs(self, queue, clock):
        for _ in range(4):
            await queue.enqueue("welcome", {}, JobOptions(max_attempts=1))
        jobs = await queue.fetch_next(3)
        await queue.mark_completed(jobs[0])
        await queue.mark_failed(jobs[1], "boom")
        clock.advance(100)
        await queue.mark_completed(jobs[2])

        removed = await queue.clean(50, [JobState.COMPLETED, JobState.FAILED])

        assert removed == 2
        assert await queue.get_job(jobs[0].id) is None
        assert await queue.get_job(jobs[1].id) is None
        assert (await queue.get_job(jobs[2].id)).state == JobState.COMPLETED

    @pytest.mark.asyncio
    async def test_clean_rejects_live_states(self, queue):
        with pytest.raises(ValidationError):
            await queue.clean(0, [JobState.WAITING])
        with pytest.raises(ValidationError):
            await queue.clean(0, [JobState.ACTIVE])

    @pytest.mark.asyncio
    async def test_stats_sum_to_created_minus_cleaned(self, queue, clock):
        created = 6
        for _ in range(created):
            await queue.enqueue("welcome", {}, JobOptions(max_attempts=1))
        await queue.enqueue("welcome", {}, JobOptions(delay_seconds=60))
        created += 1
        jobs = await queue.fetch_next(4)
        await queue.mark_completed(jobs[0])
        await queue.mark_completed(jobs[1])
        await queue.mark_failed(jobs[2], "boom")

        removed = await queue.clean(0, [JobState.COMPLETED])

        stats = await queue.get_stats()
        assert removed == 2
        assert stats.total == created - removed
        assert stats.to_dict() == {
            "waiting": 2,
            "active": 1,
            "completed": 0,
            "failed": 1,
            "delayed": 1,
        }
