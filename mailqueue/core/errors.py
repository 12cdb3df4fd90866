"""Error codes and exception taxonomy for the mail queue.

Exceptions raised inside the queue carry an ``ErrorCode`` and a
``retryable`` flag. The worker uses ``retryable`` to choose between the
backoff path and moving a job straight to ``failed``; the HTTP layer turns
the code into a structured ``detail`` payload via ``build_error``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Queue error codes."""

    # Input
    VALIDATION_FAILED = "VALIDATION_FAILED"
    MISSING_RECIPIENT = "MISSING_RECIPIENT"

    # Store
    QUEUE_UNAVAILABLE = "QUEUE_UNAVAILABLE"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    JOB_STALLED = "JOB_STALLED"

    # Dispatch
    HANDLER_NOT_FOUND = "HANDLER_NOT_FOUND"
    DELIVERY_FAILED = "DELIVERY_FAILED"
    JOB_TIMEOUT = "JOB_TIMEOUT"

    # Operator surface
    AUTHORIZATION_FAILED = "AUTHORIZATION_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class ErrorSeverity(str, Enum):
    CRITICAL = "critical"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


ERROR_SEVERITY_MAPPING: Dict[ErrorCode, ErrorSeverity] = {
    ErrorCode.QUEUE_UNAVAILABLE: ErrorSeverity.CRITICAL,
    ErrorCode.HANDLER_NOT_FOUND: ErrorSeverity.ERROR,
    ErrorCode.DELIVERY_FAILED: ErrorSeverity.WARNING,
    ErrorCode.JOB_TIMEOUT: ErrorSeverity.WARNING,
    ErrorCode.JOB_STALLED: ErrorSeverity.WARNING,
    ErrorCode.VALIDATION_FAILED: ErrorSeverity.INFO,
    ErrorCode.MISSING_RECIPIENT: ErrorSeverity.INFO,
    ErrorCode.JOB_NOT_FOUND: ErrorSeverity.INFO,
}


def get_error_severity(error_code: ErrorCode) -> ErrorSeverity:
    return ERROR_SEVERITY_MAPPING.get(error_code, ErrorSeverity.ERROR)


class JobQueueError(Exception):
    """Base class for queue errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    retryable: bool = False

    def __init__(self, message: str, *, code: Optional[ErrorCode] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(JobQueueError):
    """Malformed enqueue request; rejected before persistence."""

    code = ErrorCode.VALIDATION_FAILED


class QueueUnavailableError(JobQueueError):
    """Durable store unreachable."""

    code = ErrorCode.QUEUE_UNAVAILABLE


class JobNotFoundError(JobQueueError):
    code = ErrorCode.JOB_NOT_FOUND

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class HandlerNotFoundError(JobQueueError):
    """No handler registered for a job type. Configuration error, never retried."""

    code = ErrorCode.HANDLER_NOT_FOUND

    def __init__(self, job_type: str):
        super().__init__(f"No handler for type: {job_type}")
        self.job_type = job_type


class DeliveryError(JobQueueError):
    """The underlying send failed; goes through retry/backoff."""

    code = ErrorCode.DELIVERY_FAILED
    retryable = True


class StalledJobError(JobQueueError):
    """The worker's lease on an active job expired or was taken over."""

    code = ErrorCode.JOB_STALLED

    def __init__(self, job_id: str, message: Optional[str] = None):
        super().__init__(message or f"Lease lost for job {job_id}")
        self.job_id = job_id


@dataclass
class ErrorDetail:
    code: ErrorCode
    severity: ErrorSeverity
    message: str
    stage: Optional[str] = None
    context: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "code": self.code.value,
            "severity": self.severity.value,
            "message": self.message,
        }
        if self.stage:
            result["stage"] = self.stage
        if self.context:
            result["context"] = self.context
        return result


def build_error(
    error_code: ErrorCode,
    stage: str,
    message: str,
    **context: Any,
) -> Dict[str, Any]:
    """Unified error dict builder for API responses.

    Returns a dict suitable for direct inclusion under `detail`.
    """
    return ErrorDetail(
        code=error_code,
        severity=get_error_severity(error_code),
        message=message,
        stage=stage,
        context=context or None,
    ).to_dict()


__all__ = [
    "ErrorCode",
    "ErrorSeverity",
    "JobQueueError",
    "ValidationError",
    "QueueUnavailableError",
    "JobNotFoundError",
    "HandlerNotFoundError",
    "DeliveryError",
    "StalledJobError",
    "build_error",
]
