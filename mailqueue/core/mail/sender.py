"""Mail transports used by the email job handlers."""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from mailqueue.core.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    ok: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class MailSender(ABC):
    """Delivers one message to one address."""

    name: str = "base"

    @abstractmethod
    async def send(self, address: str, subject: str, body: str) -> SendResult:
        pass

    async def close(self) -> None:
        pass


class HttpMailSender(MailSender):
    """Posts messages to a transactional mail HTTP API."""

    name = "http"

    def __init__(
        self,
        api_url: str,
        api_key: str = "",
        from_name: str = "E-Commerce Store",
        from_address: str = "no-reply@localhost",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not api_url:
            raise ValueError("MAIL_API_URL is required for the http mail backend")
        self.api_url = api_url
        self.api_key = api_key
        self.from_name = from_name
        self.from_address = from_address
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    def _build_payload(self, address: str, subject: str, body: str) -> Dict[str, Any]:
        return {
            "from": {"name": self.from_name, "email": self.from_address},
            "to": [{"email": address}],
            "subject": subject,
            "html": body,
        }

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def send(self, address: str, subject: str, body: str) -> SendResult:
        try:
            response = await self._get_client().post(
                self.api_url,
                json=self._build_payload(address, subject, body),
                headers=self._headers(),
            )
        except httpx.HTTPError as e:
            logger.error(f"Mail API request failed: {e}")
            return SendResult(ok=False, error=f"Mail API request failed: {e}")

        if response.status_code >= 300:
            logger.error(f"Mail API error: {response.status_code} - {response.text[:200]}")
            return SendResult(ok=False, error=f"Mail API error: {response.status_code}")

        message_id = None
        try:
            message_id = response.json().get("id")
        except ValueError:
            pass
        logger.info(f"Email sent: {subject}")
        return SendResult(ok=True, message_id=message_id)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


class LogMailSender(MailSender):
    """Development transport: logs the message and reports success."""

    name = "log"

    async def send(self, address: str, subject: str, body: str) -> SendResult:
        message_id = uuid.uuid4().hex
        logger.info(
            f"[mail:log] to={address} subject={subject!r} ({len(body)} chars)",
            extra={"message_id": message_id},
        )
        return SendResult(ok=True, message_id=message_id)


def create_mail_sender(settings: Settings) -> MailSender:
    backend = settings.MAIL_BACKEND.strip().lower()
    if backend == "http":
        return HttpMailSender(
            api_url=settings.MAIL_API_URL,
            api_key=settings.MAIL_API_KEY,
            from_name=settings.MAIL_FROM_NAME,
            from_address=settings.MAIL_FROM_ADDRESS,
            timeout=settings.MAIL_TIMEOUT_SECONDS,
        )
    if backend == "log":
        return LogMailSender()
    raise ValueError(f"Unknown MAIL_BACKEND: {settings.MAIL_BACKEND}")
