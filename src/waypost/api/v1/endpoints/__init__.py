# src/waypost/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .actors import router as actors_router
from .follows import router as follows_router
from .inbox import router as inbox_router
from .outbox import router as outbox_router
from .webfinger import router as webfinger_router

__all__ = [
    "actors_router",
    "follows_router",
    "inbox_router",
    "outbox_router",
    "webfinger_router",
]
