"""API route aggregation."""
from fastapi import APIRouter

from mailqueue.api.v1 import health, queue


def build_api_router(include_test_routes: bool = False) -> APIRouter:
    """Assemble the versioned API; test-job routes are opt-in."""
    api_router = APIRouter()

    v1_router = APIRouter(prefix="/v1")
    v1_router.include_router(queue.router, prefix="/queue", tags=["queue"])
    if include_test_routes:
        v1_router.include_router(queue.test_router, prefix="/queue", tags=["queue"])
    v1_router.include_router(health.router, tags=["health"])

    api_router.include_router(v1_router)
    return api_router


__all__ = ["build_api_router"]
