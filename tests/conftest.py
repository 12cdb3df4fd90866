import os
from typing import Dict, List

import pytest

from mailqueue.core.config import Settings, reset_settings
from mailqueue.core.job_queue import InMemoryJobQueue
from mailqueue.core.mail.sender import MailSender, SendResult


# List of environment variables that may be modified by tests
_ENV_VARS_TO_ISOLATE = [
    "ADMIN_TOKEN",
    "ENVIRONMENT",
    "QUEUE_BACKEND",
    "QUEUE_NAME",
    "MAIL_BACKEND",
    "MAIL_API_URL",
    "FRONTEND_URL",
    "RUN_EMBEDDED_WORKER",
]


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate environment variables and cached settings between tests."""
    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    reset_settings()
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v
        reset_settings()


class FakeClock:
    """Manually advanced epoch clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingMailSender(MailSender):
    """Records messages; fails the first `fail_times` sends."""

    name = "recording"

    def __init__(self) -> None:
        self.fail_times = 0
        self.raise_error = False
        self.calls = 0
        self.sent: List[Dict[str, str]] = []

    async def send(self, address: str, subject: str, body: str) -> SendResult:
        self.calls += 1
        if self.calls <= self.fail_times:
            if self.raise_error:
                raise ConnectionError("smtp connection reset")
            return SendResult(ok=False, error="smtp unavailable")
        self.sent.append({"address": address, "subject": subject, "body": body})
        return SendResult(ok=True, message_id=f"msg-{self.calls}")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def queue(clock) -> InMemoryJobQueue:
    return InMemoryJobQueue("email", lease_seconds=30.0, clock=clock)


@pytest.fixture
def mail_sender() -> RecordingMailSender:
    return RecordingMailSender()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        ENVIRONMENT="test",
        QUEUE_BACKEND="memory",
        MAIL_BACKEND="log",
        FRONTEND_URL="https://shop.example.com",
        STORE_NAME="ModernShop",
    )
