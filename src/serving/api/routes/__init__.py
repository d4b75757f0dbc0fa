"""
API Routes Module
"""
from .health import router as health_router
from .sync import router as sync_router
from .webhooks import router as webhooks_router

__all__ = [
    "health_router",
    "sync_router",
    "webhooks_router",
]
