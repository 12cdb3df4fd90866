"""Payload schemas for email jobs, keyed by job type.

Order and user data are snapshots taken at enqueue time, so a job can be
delivered without the primary database being reachable.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from mailqueue.core.errors import ErrorCode, ValidationError

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+$"


class EmailJobType(str, Enum):
    ORDER_CONFIRMATION = "orderConfirmation"
    ORDER_STATUS_UPDATE = "orderStatusUpdate"
    PASSWORD_RESET = "passwordReset"
    WELCOME = "welcome"
    REFUND_CONFIRMATION = "refundConfirmation"


class UserSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


class OrderItem(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    name: str
    quantity: int = 1
    price: float = 0.0


class OrderSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True, extra="allow")

    id: str
    order_number: str
    status: str = "pending"
    total: float = 0.0
    items: List[OrderItem] = Field(default_factory=list)
    user: Optional[UserSnapshot] = None
    guest_email: Optional[str] = None
    shipping_address: Optional[Dict[str, Any]] = None
    payment_method: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def recipient(self) -> Optional[str]:
        """Registered user's email, else the guest checkout email."""
        if self.user is not None and self.user.email:
            return self.user.email
        return self.guest_email or None


class OrderEmailPayload(BaseModel):
    """Shared by order confirmation, status update and refund emails."""

    model_config = ConfigDict(frozen=True)

    order_id: str
    user_email: str = Field(pattern=EMAIL_PATTERN)
    order: OrderSnapshot


class PasswordResetPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str = Field(pattern=EMAIL_PATTERN)
    reset_token: str = Field(min_length=1)


class WelcomePayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    email: str = Field(pattern=EMAIL_PATTERN)
    name: str = Field(min_length=1)
    user: Optional[UserSnapshot] = None


EmailPayload = Union[OrderEmailPayload, PasswordResetPayload, WelcomePayload]

PAYLOAD_MODELS: Dict[EmailJobType, Type[BaseModel]] = {
    EmailJobType.ORDER_CONFIRMATION: OrderEmailPayload,
    EmailJobType.ORDER_STATUS_UPDATE: OrderEmailPayload,
    EmailJobType.PASSWORD_RESET: PasswordResetPayload,
    EmailJobType.WELCOME: WelcomePayload,
    EmailJobType.REFUND_CONFIRMATION: OrderEmailPayload,
}


def _describe(e: PydanticValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "payload"
        parts.append(f"{loc}: {err.get('msg')}")
    return "; ".join(parts)


def parse_payload(job_type: Union[EmailJobType, str], data: Mapping[str, Any]) -> EmailPayload:
    """Validate raw payload data against the schema for its job type."""
    try:
        kind = EmailJobType(job_type)
    except ValueError:
        raise ValidationError(f"Unknown email job type: {job_type}")

    try:
        return PAYLOAD_MODELS[kind].model_validate(dict(data))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {kind.value} payload: {_describe(e)}") from e


def coerce_model(model: Type[BaseModel], value: Any, what: str) -> Any:
    if isinstance(value, model):
        return value
    if not isinstance(value, Mapping):
        raise ValidationError(f"{what} must be a mapping or {model.__name__}")
    try:
        return model.model_validate(dict(value))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {what}: {_describe(e)}") from e


def order_payload(order: OrderSnapshot, purpose: str) -> OrderEmailPayload:
    recipient = order.recipient
    if not recipient:
        raise ValidationError(
            f"No email address found for {purpose}",
            code=ErrorCode.MISSING_RECIPIENT,
        )
    try:
        return OrderEmailPayload(order_id=order.id, user_email=recipient, order=order)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid {purpose} payload: {_describe(e)}") from e
