# src/waypost/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    actors_router,
    follows_router,
    inbox_router,
    outbox_router,
    webfinger_router,
)

__all__ = [
    "actors_router",
    "follows_router",
    "inbox_router",
    "outbox_router",
    "webfinger_router",
]
