# src/waypost/schemas/__init__.py
"""
Pydantic schemas for federation payloads and API request/response models.
"""

from .activity import (
    AcceptActivity,
    Activity,
    CreateActivity,
    FollowActivity,
    LikeActivity,
    ParsedActivity,
    RejectActivity,
    UndoActivity,
    UnknownActivity,
    parse_activity,
)
from .actor import ActorDocument, OrderedCollection, PublicKeyDocument, WebFingerResponse
from .relationship import ActionAccepted, FollowCreate, FollowerDecision, FollowRequestResponse

__all__ = [
    "Activity", "ParsedActivity", "parse_activity",
    "AcceptActivity", "CreateActivity", "FollowActivity", "LikeActivity",
    "RejectActivity", "UndoActivity", "UnknownActivity",
    "ActorDocument", "OrderedCollection", "PublicKeyDocument", "WebFingerResponse",
    "ActionAccepted", "FollowCreate", "FollowerDecision", "FollowRequestResponse",
]
