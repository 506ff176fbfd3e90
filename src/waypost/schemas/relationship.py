"""Client API schemas for follow management."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class FollowCreate(BaseModel):
    """Request a local actor to follow ``target``."""

    target: str = Field(..., min_length=1, description="Actor URI to follow")


class FollowerDecision(BaseModel):
    """Accept or reject a pending follower."""

    peer: str = Field(..., min_length=1, description="Actor URI of the requesting follower")


class FollowRequestResponse(BaseModel):
    """A pending follow request awaiting moderation."""

    peer_actor_uri: str
    state: str
    follow_activity_id: str | None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ActionAccepted(BaseModel):
    """Acknowledgement for asynchronously processed actions."""

    status: str = "Accepted"
    activity_id: str | None = None
