"""Job handlers for the five email job types."""

from __future__ import annotations

import inspect
import logging
from abc import abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from mailqueue.core.config import Settings, get_settings
from mailqueue.core.errors import DeliveryError, ValidationError
from mailqueue.core.email_jobs import content
from mailqueue.core.email_jobs.payloads import (
    EmailJobType,
    OrderEmailPayload,
    OrderSnapshot,
    PasswordResetPayload,
    WelcomePayload,
    parse_payload,
)
from mailqueue.core.job_queue.core import (
    HandlerRegistry,
    HandlerResult,
    JobContext,
    JobHandler,
)
from mailqueue.core.mail.sender import MailSender, SendResult

logger = logging.getLogger(__name__)

OrderHook = Callable[[OrderSnapshot], Union[Awaitable[None], None]]


class EmailHandler(JobHandler):
    """Parse the payload, render, send through the mail collaborator."""

    job_type: EmailJobType
    label: str = "Email"

    def __init__(self, sender: MailSender, settings: Optional[Settings] = None):
        self._sender = sender
        self._settings = settings or get_settings()

    @property
    def name(self) -> str:
        return self.job_type.value

    @abstractmethod
    def render(self, payload: Any) -> content.RenderedEmail:
        """Build the message for a parsed payload."""
        pass

    @abstractmethod
    def describe(self, payload: Any, sent: SendResult) -> Dict[str, Any]:
        """Result stored on the completed job."""
        pass

    async def after_send(self, payload: Any) -> None:
        pass

    async def handle(self, ctx: JobContext) -> HandlerResult:
        ctx.progress("started")
        try:
            payload = parse_payload(self.job_type, ctx.payload)
        except ValidationError as e:
            # A malformed stored payload fails the same way every time
            return HandlerResult.failure(e)

        message = self.render(payload)
        ctx.progress("sending")
        try:
            sent = await self._sender.send(message.address, message.subject, message.body)
        except Exception as e:
            return HandlerResult.failure(DeliveryError(f"{self.label} email failed: {e}"))
        if not sent.ok:
            return HandlerResult.failure(
                DeliveryError(f"{self.label} email failed: {sent.error or 'send rejected'}")
            )

        await self.after_send(payload)
        ctx.progress("done")
        return HandlerResult.success(self.describe(payload, sent))


class _OrderEmailHandler(EmailHandler):
    def describe(self, payload: OrderEmailPayload, sent: SendResult) -> Dict[str, Any]:
        return {
            "success": True,
            "message": f"{self.label} email sent successfully",
            "order_id": payload.order_id,
            "email": payload.user_email,
            "message_id": sent.message_id,
        }


class OrderConfirmationHandler(_OrderEmailHandler):
    job_type = EmailJobType.ORDER_CONFIRMATION
    label = "Order confirmation"

    def __init__(
        self,
        sender: MailSender,
        settings: Optional[Settings] = None,
        on_order_confirmed: Optional[OrderHook] = None,
    ):
        super().__init__(sender, settings)
        self._on_order_confirmed = on_order_confirmed

    def render(self, payload: OrderEmailPayload) -> content.RenderedEmail:
        return content.render_order_confirmation(payload, self._settings.STORE_NAME)

    async def after_send(self, payload: OrderEmailPayload) -> None:
        if self._on_order_confirmed is None:
            return
        # The email is already out; a failed bookkeeping update must not re-send it
        try:
            outcome = self._on_order_confirmed(payload.order)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.warning(f"Could not mark order {payload.order_id} as emailed: {e}")


class OrderStatusUpdateHandler(_OrderEmailHandler):
    job_type = EmailJobType.ORDER_STATUS_UPDATE
    label = "Order status update"

    def render(self, payload: OrderEmailPayload) -> content.RenderedEmail:
        return content.render_order_status_update(payload, self._settings.STORE_NAME)

    def describe(self, payload: OrderEmailPayload, sent: SendResult) -> Dict[str, Any]:
        result = super().describe(payload, sent)
        result["status"] = payload.order.status
        return result


class RefundConfirmationHandler(_OrderEmailHandler):
    job_type = EmailJobType.REFUND_CONFIRMATION
    label = "Refund confirmation"

    def render(self, payload: OrderEmailPayload) -> content.RenderedEmail:
        return content.render_refund_confirmation(payload, self._settings.STORE_NAME)


class PasswordResetHandler(EmailHandler):
    job_type = EmailJobType.PASSWORD_RESET
    label = "Password reset"

    def render(self, payload: PasswordResetPayload) -> content.RenderedEmail:
        return content.render_password_reset(
            payload, self._settings.STORE_NAME, self._settings.FRONTEND_URL
        )

    def describe(self, payload: Any, sent: SendResult) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Password reset email sent successfully",
            "email": payload.email,
            "message_id": sent.message_id,
        }


class WelcomeHandler(EmailHandler):
    job_type = EmailJobType.WELCOME
    label = "Welcome"

    def render(self, payload: WelcomePayload) -> content.RenderedEmail:
        return content.render_welcome(
            payload, self._settings.STORE_NAME, self._settings.FRONTEND_URL
        )

    def describe(self, payload: Any, sent: SendResult) -> Dict[str, Any]:
        return {
            "success": True,
            "message": "Welcome email sent successfully",
            "email": payload.email,
            "name": payload.name,
            "message_id": sent.message_id,
        }


def register_email_handlers(
    registry: HandlerRegistry,
    sender: MailSender,
    settings: Optional[Settings] = None,
    on_order_confirmed: Optional[OrderHook] = None,
) -> HandlerRegistry:
    """Register a handler for every email job type."""
    settings = settings or get_settings()
    registry.register(OrderConfirmationHandler(sender, settings, on_order_confirmed))
    registry.register(OrderStatusUpdateHandler(sender, settings))
    registry.register(PasswordResetHandler(sender, settings))
    registry.register(WelcomeHandler(sender, settings))
    registry.register(RefundConfirmationHandler(sender, settings))
    return registry
