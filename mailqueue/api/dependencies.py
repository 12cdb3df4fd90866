"""API dependencies: operator authentication and runtime access."""

import os
from typing import Optional

from fastapi import Header, HTTPException, Request

from mailqueue.core.bootstrap import QueueRuntime
from mailqueue.core.email_jobs.producer import EmailJobProducer
from mailqueue.core.errors import ErrorCode, build_error
from mailqueue.core.job_queue.admin import QueueAdmin


async def get_admin_token(
    x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token"),
) -> str:
    """
    Validate the operator token for queue administration.

    The expected value is read from the ADMIN_TOKEN environment variable on
    every request, so rotating it does not need a restart.

    Raises:
        HTTPException: 401 if the token is missing, 403 if it is invalid,
            500 if no token is configured
    """
    if not x_admin_token:
        raise HTTPException(
            status_code=401,
            detail=build_error(
                ErrorCode.AUTHORIZATION_FAILED,
                stage="auth",
                message="Missing admin token",
                hint="Provide X-Admin-Token header",
            ),
        )

    expected_token = os.getenv("ADMIN_TOKEN")
    if not expected_token:
        raise HTTPException(
            status_code=500,
            detail=build_error(
                ErrorCode.AUTHORIZATION_FAILED,
                stage="auth",
                message="Admin token not configured",
                hint="Set ADMIN_TOKEN environment variable",
            ),
        )

    if x_admin_token != expected_token:
        raise HTTPException(
            status_code=403,
            detail=build_error(
                ErrorCode.AUTHORIZATION_FAILED,
                stage="auth",
                message="Invalid admin token",
                hint="Check X-Admin-Token header",
            ),
        )

    return x_admin_token


def get_runtime(request: Request) -> QueueRuntime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(
            status_code=503,
            detail=build_error(
                ErrorCode.QUEUE_UNAVAILABLE,
                stage="startup",
                message="Queue runtime not initialized",
            ),
        )
    return runtime


def get_queue_admin(request: Request) -> QueueAdmin:
    return get_runtime(request).admin


def get_producer(request: Request) -> EmailJobProducer:
    return get_runtime(request).producer
