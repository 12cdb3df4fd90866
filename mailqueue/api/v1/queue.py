"""
Queue administration endpoints.

Operator-only inspection and control of the email queue: stats, failed jobs,
retry, pause/resume, cleanup and a dashboard aggregate.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from mailqueue.api.dependencies import get_admin_token, get_producer, get_queue_admin
from mailqueue.core.email_jobs.payloads import EmailJobType
from mailqueue.core.email_jobs.producer import EmailJobProducer
from mailqueue.core.errors import ErrorCode, QueueUnavailableError, ValidationError, build_error
from mailqueue.core.job_queue.admin import QueueAdmin

logger = logging.getLogger(__name__)
router = APIRouter(dependencies=[Depends(get_admin_token)])
test_router = APIRouter(dependencies=[Depends(get_admin_token)])


class TestEmailRequest(BaseModel):
    type: str = Field("welcome", description="welcome | passwordReset")
    email: str = Field("test@example.com")
    priority: int = Field(1, ge=0)


class CleanResponse(BaseModel):
    success: bool
    message: str
    removed: Dict[str, int]


@asynccontextmanager
async def store_errors(stage: str) -> AsyncIterator[None]:
    """Translate store outages into 503 responses."""
    try:
        yield
    except QueueUnavailableError as e:
        logger.error(f"Queue store unavailable during {stage}: {e.message}")
        raise HTTPException(
            status_code=503,
            detail=build_error(ErrorCode.QUEUE_UNAVAILABLE, stage=stage, message=e.message),
        )


@router.get("/dashboard")
async def get_dashboard(admin: QueueAdmin = Depends(get_queue_admin)) -> Dict[str, Any]:
    async with store_errors("dashboard"):
        dashboard = await admin.dashboard()
    return {"success": True, "dashboard": dashboard.to_dict()}


@router.get("/stats")
async def get_stats(admin: QueueAdmin = Depends(get_queue_admin)) -> Dict[str, Any]:
    async with store_errors("stats"):
        stats = await admin.get_stats()
        paused = await admin.is_paused()
    return {"success": True, "stats": stats.to_dict(), "paused": paused}


@router.get("/failed-jobs")
async def get_failed_jobs(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    admin: QueueAdmin = Depends(get_queue_admin),
) -> Dict[str, Any]:
    async with store_errors("failed_jobs"):
        failed = await admin.get_failed(page=page, limit=limit)
    return {"success": True, **failed.to_dict()}


@router.get("/jobs/{job_id}")
async def get_job(job_id: str, admin: QueueAdmin = Depends(get_queue_admin)) -> Dict[str, Any]:
    async with store_errors("get_job"):
        job = await admin.get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=404,
            detail=build_error(
                ErrorCode.JOB_NOT_FOUND,
                stage="get_job",
                message=f"Job {job_id} not found",
                job_id=job_id,
            ),
        )
    data = job.to_dict()
    data.pop("lock_token", None)
    return {"success": True, "job": data}


@router.post("/retry-job/{job_id}")
async def retry_job(job_id: str, admin: QueueAdmin = Depends(get_queue_admin)) -> Dict[str, Any]:
    async with store_errors("retry_job"):
        retried = await admin.retry(job_id)
    if not retried:
        raise HTTPException(
            status_code=404,
            detail=build_error(
                ErrorCode.JOB_NOT_FOUND,
                stage="retry_job",
                message=f"Job {job_id} not found or could not be retried",
                job_id=job_id,
            ),
        )
    return {"success": True, "message": f"Job {job_id} has been retried"}


@router.post("/retry-all-failed")
async def retry_all_failed(admin: QueueAdmin = Depends(get_queue_admin)) -> Dict[str, Any]:
    async with store_errors("retry_all"):
        count = await admin.retry_all()
    return {
        "success": True,
        "message": f"{count} failed jobs have been retried",
        "retried": count,
    }


@router.post("/pause")
async def pause_queue(admin: QueueAdmin = Depends(get_queue_admin)) -> Dict[str, Any]:
    async with store_errors("pause"):
        await admin.pause()
    return {"success": True, "message": "Email queue has been paused"}


@router.post("/resume")
async def resume_queue(admin: QueueAdmin = Depends(get_queue_admin)) -> Dict[str, Any]:
    async with store_errors("resume"):
        await admin.resume()
    return {"success": True, "message": "Email queue has been resumed"}


@router.post("/clean", response_model=CleanResponse)
async def clean_queue(
    completed_older_than_seconds: Optional[float] = Query(None, ge=0),
    failed_older_than_seconds: Optional[float] = Query(None, ge=0),
    admin: QueueAdmin = Depends(get_queue_admin),
):
    async with store_errors("clean"):
        removed = await admin.clean(completed_older_than_seconds, failed_older_than_seconds)
    return CleanResponse(success=True, message="Email queue has been cleaned", removed=removed)


@test_router.post("/test-email", status_code=201)
async def add_test_email_job(
    request: TestEmailRequest,
    producer: EmailJobProducer = Depends(get_producer),
) -> Dict[str, Any]:
    """Enqueue a sample email job. Not available in production."""
    try:
        async with store_errors("test_email"):
            if request.type == EmailJobType.WELCOME.value:
                job_id = await producer.enqueue_welcome(
                    {"email": request.email, "name": "Test User"},
                    priority=request.priority,
                )
            elif request.type == EmailJobType.PASSWORD_RESET.value:
                job_id = await producer.enqueue_password_reset(
                    request.email,
                    "test-token",
                    priority=request.priority,
                )
            else:
                raise HTTPException(
                    status_code=400,
                    detail=build_error(
                        ErrorCode.VALIDATION_FAILED,
                        stage="test_email",
                        message="Invalid email type",
                        allowed=[EmailJobType.WELCOME.value, EmailJobType.PASSWORD_RESET.value],
                    ),
                )
    except ValidationError as e:
        raise HTTPException(
            status_code=400,
            detail=build_error(e.code, stage="test_email", message=e.message),
        )

    return {
        "success": True,
        "message": f"Test {request.type} email job created",
        "job_id": job_id,
    }
