"""Producer API tests."""

import pytest

from mailqueue.core.email_jobs import EmailJobProducer, OrderSnapshot, enqueue_safely
from mailqueue.core.errors import ErrorCode, QueueUnavailableError, ValidationError
from mailqueue.core.job_queue import BackoffPolicy, BackoffType, InMemoryJobQueue, JobOptions, JobState


def _order(**overrides):
    order = {
        "id": "ord-1",
        "order_number": "ORD-1001",
        "status": "pending",
        "total": 59.9,
        "items": [{"name": "Mug", "quantity": 2, "price": 29.95}],
        "user": {"id": "u-1", "email": "buyer@example.com", "name": "Ada"},
    }
    order.update(overrides)
    return order


class UnavailableQueue(InMemoryJobQueue):
    async def enqueue(self, job_type, payload, options=None):
        raise QueueUnavailableError("redis down")


class TestRecipients:
    @pytest.mark.asyncio
    async def test_registered_user_email_used(self, queue):
        producer = EmailJobProducer(queue)

        job_id = await producer.enqueue_order_confirmation(_order())

        job = await queue.get_job(job_id)
        assert job.type == "orderConfirmation"
        assert job.payload["order_id"] == "ord-1"
        assert job.payload["user_email"] == "buyer@example.com"
        assert job.payload["order"]["order_number"] == "ORD-1001"

    @pytest.mark.asyncio
    async def test_guest_email_fallback(self, queue):
        producer = EmailJobProducer(queue)

        job_id = await producer.enqueue_refund_confirmation(
            _order(user=None, guest_email="guest@example.com")
        )

        assert (await queue.get_job(job_id)).payload["user_email"] == "guest@example.com"

    @pytest.mark.asyncio
    async def test_missing_recipient_rejected(self, queue):
        producer = EmailJobProducer(queue)

        with pytest.raises(ValidationError) as exc:
            await producer.enqueue_order_status_update(_order(user={"id": "u-2"}))

        assert exc.value.code == ErrorCode.MISSING_RECIPIENT
        assert "order status update" in exc.value.message
        assert (await queue.get_stats()).total == 0

    @pytest.mark.asyncio
    async def test_accepts_snapshot_model(self, queue):
        producer = EmailJobProducer(queue)
        snapshot = OrderSnapshot.model_validate(_order())

        job_id = await producer.enqueue_order_confirmation(snapshot)

        assert (await queue.get_job(job_id)).payload["order"]["id"] == "ord-1"


class TestPriorities:
    @pytest.mark.asyncio
    async def test_default_priorities(self, queue):
        producer = EmailJobProducer(queue)

        ids = {
            "orderConfirmation": await producer.enqueue_order_confirmation(_order()),
            "orderStatusUpdate": await producer.enqueue_order_status_update(_order()),
            "passwordReset": await producer.enqueue_password_reset("a@example.com", "tok"),
            "welcome": await producer.enqueue_welcome({"email": "a@example.com", "name": "Ada"}),
            "refundConfirmation": await producer.enqueue_refund_confirmation(_order()),
        }

        priorities = {kind: (await queue.get_job(job_id)).priority for kind, job_id in ids.items()}
        assert priorities == {
            "orderConfirmation": 1,
            "orderStatusUpdate": 2,
            "passwordReset": 1,
            "welcome": 3,
            "refundConfirmation": 2,
        }

    @pytest.mark.asyncio
    async def test_claim_order_follows_priority(self, queue):
        producer = EmailJobProducer(queue)
        await producer.enqueue_welcome({"email": "a@example.com", "name": "Ada"})
        await producer.enqueue_order_status_update(_order())
        await producer.enqueue_password_reset("a@example.com", "tok")

        jobs = await queue.fetch_next(3)

        assert [job.type for job in jobs] == ["passwordReset", "orderStatusUpdate", "welcome"]

    @pytest.mark.asyncio
    async def test_delay_defers_job(self, queue, clock):
        producer = EmailJobProducer(queue)

        job_id = await producer.enqueue_order_confirmation(_order(), delay_seconds=30)

        job = await queue.get_job(job_id)
        assert job.state == JobState.DELAYED
        assert job.delay_until == clock.now + 30

    @pytest.mark.asyncio
    async def test_queue_defaults_propagate(self, clock):
        defaults = JobOptions(
            max_attempts=5,
            backoff=BackoffPolicy(type=BackoffType.FIXED, delay_seconds=7),
        )
        queue = InMemoryJobQueue("email", default_options=defaults, clock=clock)
        producer = EmailJobProducer(queue)

        job = await queue.get_job(await producer.enqueue_password_reset("a@example.com", "tok"))

        assert job.max_attempts == 5
        assert job.options.backoff.type == BackoffType.FIXED
        assert job.priority == 1


class TestValidation:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("email,token", [("", "tok"), ("a@example.com", ""), ("not-an-email", "tok")])
    async def test_password_reset_requires_email_and_token(self, queue, email, token):
        with pytest.raises(ValidationError):
            await EmailJobProducer(queue).enqueue_password_reset(email, token)

    @pytest.mark.asyncio
    async def test_welcome_requires_email(self, queue):
        with pytest.raises(ValidationError):
            await EmailJobProducer(queue).enqueue_welcome({"name": "Ada"})

    @pytest.mark.asyncio
    @pytest.mark.parametrize("user", [{"email": "a@example.com"}, {"email": "a@example.com", "name": "  "}])
    async def test_welcome_without_name_uses_default_greeting(self, queue, user):
        job_id = await EmailJobProducer(queue).enqueue_welcome(user)

        assert (await queue.get_job(job_id)).payload["name"] == "Customer"

    @pytest.mark.asyncio
    async def test_order_must_be_mapping(self, queue):
        with pytest.raises(ValidationError):
            await EmailJobProducer(queue).enqueue_order_confirmation("ord-1")

    @pytest.mark.asyncio
    async def test_priority_out_of_range(self, queue):
        with pytest.raises(ValidationError):
            await EmailJobProducer(queue).enqueue_order_confirmation(_order(), priority=-1)


class TestEnqueueSafely:
    @pytest.mark.asyncio
    async def test_returns_job_id(self, queue):
        producer = EmailJobProducer(queue)

        job_id = await enqueue_safely(
            producer.enqueue_welcome({"email": "a@example.com", "name": "Ada"}),
            "welcome email",
        )

        assert job_id is not None
        assert (await queue.get_job(job_id)).type == "welcome"

    @pytest.mark.asyncio
    async def test_queue_outage_swallowed(self, clock):
        producer = EmailJobProducer(UnavailableQueue("email", clock=clock))

        assert await enqueue_safely(producer.enqueue_password_reset("a@example.com", "tok")) is None

    @pytest.mark.asyncio
    async def test_direct_call_propagates_outage(self, clock):
        producer = EmailJobProducer(UnavailableQueue("email", clock=clock))

        with pytest.raises(QueueUnavailableError):
            await producer.enqueue_password_reset("a@example.com", "tok")
