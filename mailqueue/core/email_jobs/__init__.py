"""Email jobs: payload schemas, producer and handlers."""

from mailqueue.core.email_jobs.handlers import (
    EmailHandler,
    OrderConfirmationHandler,
    OrderStatusUpdateHandler,
    PasswordResetHandler,
    RefundConfirmationHandler,
    WelcomeHandler,
    register_email_handlers,
)
from mailqueue.core.email_jobs.payloads import (
    EmailJobType,
    OrderEmailPayload,
    OrderItem,
    OrderSnapshot,
    PasswordResetPayload,
    UserSnapshot,
    WelcomePayload,
    parse_payload,
)
from mailqueue.core.email_jobs.producer import EmailJobProducer, enqueue_safely

__all__ = [
    "EmailHandler",
    "OrderConfirmationHandler",
    "OrderStatusUpdateHandler",
    "PasswordResetHandler",
    "RefundConfirmationHandler",
    "WelcomeHandler",
    "register_email_handlers",
    "EmailJobType",
    "OrderEmailPayload",
    "OrderItem",
    "OrderSnapshot",
    "PasswordResetPayload",
    "UserSnapshot",
    "WelcomePayload",
    "parse_payload",
    "EmailJobProducer",
    "enqueue_safely",
]
