"""Health endpoint: reports whether the queue store answers."""

from __future__ import annotations

from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from mailqueue.api.dependencies import get_runtime
from mailqueue.core.bootstrap import QueueRuntime
from mailqueue.core.errors import QueueUnavailableError

router = APIRouter()


@router.get("/health")
async def queue_health(runtime: QueueRuntime = Depends(get_runtime)):
    body = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "queue": {
            "name": runtime.queue.name,
            "backend": runtime.settings.QUEUE_BACKEND,
            "reachable": True,
        },
    }
    try:
        stats = await runtime.queue.get_stats()
        body["queue"]["stats"] = stats.to_dict()
        body["queue"]["paused"] = await runtime.queue.is_paused()
    except QueueUnavailableError as e:
        body["status"] = "unhealthy"
        body["queue"]["reachable"] = False
        body["queue"]["error"] = e.message
        return JSONResponse(status_code=503, content=body)
    return body
