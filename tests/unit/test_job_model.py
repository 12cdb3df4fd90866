"""Unit tests for the job record, options, backoff and handler primitives."""

import pytest

from mailqueue.core.errors import (
    DeliveryError,
    ErrorCode,
    HandlerNotFoundError,
    ValidationError,
)
from mailqueue.core.job_queue import (
    MAX_PRIORITY,
    BackoffPolicy,
    BackoffType,
    FunctionHandler,
    HandlerRegistry,
    HandlerResult,
    Job,
    JobContext,
    JobOptions,
    JobState,
    create_job,
)
from mailqueue.core.job_queue.core import check_clean_states, validate_job_request


class TestBackoff:
    def test_exponential_doubles_per_attempt(self):
        policy = BackoffPolicy()
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [2.0, 4.0, 8.0]

    def test_fixed_is_constant(self):
        policy = BackoffPolicy(type=BackoffType.FIXED, delay_seconds=5.0)
        assert policy.delay_for(1) == policy.delay_for(4) == 5.0

    def test_job_next_retry_delay_uses_attempts_made(self):
        job = create_job("email", "welcome", {}, JobOptions(), job_id="1")
        job.attempts_made = 2
        assert job.next_retry_delay == 4.0


class TestJobOptions:
    def test_defaults(self):
        options = JobOptions()
        assert options.priority == 0
        assert options.max_attempts == 3
        assert options.backoff.type == BackoffType.EXPONENTIAL
        assert options.backoff.delay_seconds == 2.0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"priority": -1},
            {"priority": MAX_PRIORITY + 1},
            {"priority": True},
            {"priority": 1.5},
            {"delay_seconds": -1},
            {"max_attempts": 0},
            {"timeout_seconds": 0},
            {"backoff": BackoffPolicy(delay_seconds=-1)},
        ],
    )
    def test_invalid_options_rejected(self, kwargs):
        with pytest.raises(ValidationError):
            JobOptions(**kwargs)


class TestStateMachine:
    def test_allowed_transitions(self):
        assert JobState.WAITING.can_transition_to(JobState.ACTIVE)
        assert JobState.DELAYED.can_transition_to(JobState.WAITING)
        assert JobState.ACTIVE.can_transition_to(JobState.COMPLETED)
        assert JobState.ACTIVE.can_transition_to(JobState.DELAYED)
        assert JobState.ACTIVE.can_transition_to(JobState.FAILED)
        assert JobState.FAILED.can_transition_to(JobState.WAITING)

    def test_no_skipping_active(self):
        assert not JobState.WAITING.can_transition_to(JobState.COMPLETED)
        assert not JobState.WAITING.can_transition_to(JobState.FAILED)
        assert not JobState.DELAYED.can_transition_to(JobState.ACTIVE)

    def test_completed_is_final(self):
        for state in JobState:
            assert not JobState.COMPLETED.can_transition_to(state)

    def test_clean_only_accepts_terminal_states(self):
        assert check_clean_states(["completed", JobState.FAILED]) == [
            JobState.COMPLETED,
            JobState.FAILED,
        ]
        with pytest.raises(ValidationError):
            check_clean_states([JobState.WAITING])


class TestCreateJob:
    def test_initial_state_waiting(self):
        job = create_job("email", "welcome", {"email": "a@b.c"}, job_id="7", seq=7, now=50.0)
        assert job.state == JobState.WAITING
        assert job.created_at == 50.0
        assert job.delay_until is None
        assert job.attempts_made == 0

    def test_delay_makes_job_delayed(self):
        job = create_job(
            "email", "welcome", {}, JobOptions(delay_seconds=10), job_id="1", now=100.0
        )
        assert job.state == JobState.DELAYED
        assert job.delay_until == 110.0

    def test_serialization_keeps_counters(self):
        job = create_job("email", "welcome", {"n": [1, 2]}, JobOptions(priority=3), job_id="9")
        job.attempts_made = 2
        job.retry_count = 1
        job.failed_reason = "boom"

        restored = Job.from_dict(job.to_dict())

        assert restored.priority == 3
        assert restored.attempts_made == 2
        assert restored.retry_count == 1
        assert restored.failed_reason == "boom"
        assert restored.payload == {"n": [1, 2]}


class TestValidateJobRequest:
    @pytest.mark.parametrize("job_type", ["", "   ", None, 5])
    def test_empty_type_rejected(self, job_type):
        with pytest.raises(ValidationError):
            validate_job_request(job_type, {})

    def test_payload_must_be_mapping(self):
        with pytest.raises(ValidationError):
            validate_job_request("welcome", ["not", "a", "mapping"])

    def test_payload_must_be_serializable(self):
        with pytest.raises(ValidationError) as exc:
            validate_job_request("welcome", {"obj": object()})
        assert exc.value.code == ErrorCode.VALIDATION_FAILED


class TestHandlers:
    def _ctx(self, payload=None):
        job = create_job("email", "welcome", payload or {"x": 21}, job_id="1")
        return JobContext(job)

    @pytest.mark.asyncio
    async def test_function_handler_success(self):
        async def double(ctx):
            return ctx.payload["x"] * 2

        result = await FunctionHandler("welcome", double).handle(self._ctx())
        assert result.ok
        assert result.value == 42

    @pytest.mark.asyncio
    async def test_function_handler_sync_function(self):
        result = await FunctionHandler("welcome", lambda ctx: "done").handle(self._ctx())
        assert result == HandlerResult.success("done")

    @pytest.mark.asyncio
    async def test_function_handler_exception_is_retryable_delivery_error(self):
        def explode(ctx):
            raise RuntimeError("smtp down")

        result = await FunctionHandler("welcome", explode).handle(self._ctx())
        assert not result.ok
        assert isinstance(result.error, DeliveryError)
        assert result.retryable
        assert result.error.message == "smtp down"

    @pytest.mark.asyncio
    async def test_function_handler_keeps_queue_errors(self):
        def reject(ctx):
            raise ValidationError("bad payload")

        result = await FunctionHandler("welcome", reject).handle(self._ctx())
        assert isinstance(result.error, ValidationError)
        assert not result.retryable

    def test_registry_decorator_and_resolve(self):
        registry = HandlerRegistry()

        @registry.handler("welcome")
        async def handle_welcome(ctx):
            return None

        assert registry.get("welcome") is not None
        assert registry.resolve("welcome").name == "welcome"
        assert registry.types == ["welcome"]

    def test_registry_unknown_type(self):
        with pytest.raises(HandlerNotFoundError) as exc:
            HandlerRegistry().resolve("unknownType")
        assert str(exc.value) == "No handler for type: unknownType"
        assert not exc.value.retryable

    def test_context_payload_is_read_only(self):
        job = create_job("email", "welcome", {"user": {"name": "Ada"}}, job_id="1")
        ctx = JobContext(job)

        with pytest.raises(TypeError):
            ctx.payload["user"] = {}
        ctx.payload["user"]["name"] = "changed"
        assert job.payload["user"]["name"] == "Ada"

    def test_context_progress_forwards_stage(self):
        seen = []
        job = create_job("email", "welcome", {}, job_id="1")
        ctx = JobContext(job, on_progress=lambda j, stage: seen.append((j.id, stage)))

        ctx.progress("sending")

        assert seen == [("1", "sending")]
