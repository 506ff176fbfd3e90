# src/waypost/models/__init__.py
"""SQLAlchemy models for the Waypost federation engine."""

from .actor import Actor
from .queue import InboxItem, OutboxItem
from .relationship import FollowerRelation, FollowingRelation, RelationState

__all__ = [
    "Actor",
    "InboxItem", "OutboxItem",
    "FollowerRelation", "FollowingRelation", "RelationState",
]
