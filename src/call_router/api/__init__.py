"""
HTTP API

Combines the webhook and health routers.
"""

from fastapi import APIRouter

from .health import router as health_router
from .webhooks import router as webhooks_router

router = APIRouter()
router.include_router(health_router)
router.include_router(webhooks_router)

__all__ = ["router"]
