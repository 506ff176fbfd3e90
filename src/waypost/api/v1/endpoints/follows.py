"""Client API for following peers and moderating follow requests."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Query, status

from waypost.api.v1.dependencies import CurrentActorDep, RelationshipsDep, SessionDep
from waypost.schemas.relationship import (
    ActionAccepted,
    FollowCreate,
    FollowerDecision,
    FollowRequestResponse,
)

router = APIRouter(tags=["follows"])


@router.post("/follows", status_code=status.HTTP_202_ACCEPTED, response_model=ActionAccepted)
async def follow(
    body: FollowCreate,
    actor: CurrentActorDep,
    db: SessionDep,
    relationships: RelationshipsDep,
) -> ActionAccepted:
    """Send a Follow to ``target``; a no-op when already following."""
    item = await relationships.follow(db, actor, body.target)
    return ActionAccepted(activity_id=item.activity_id if item else None)


@router.delete("/follows", status_code=status.HTTP_202_ACCEPTED, response_model=ActionAccepted)
async def unfollow(
    target: Annotated[str, Query(min_length=1)],
    actor: CurrentActorDep,
    db: SessionDep,
    relationships: RelationshipsDep,
) -> ActionAccepted:
    """Send Undo{Follow}; the relation is dropped once the peer receives it."""
    item = await relationships.unfollow(db, actor, target)
    return ActionAccepted(activity_id=item.activity_id)


@router.get("/follow-requests", response_model=list[FollowRequestResponse])
async def list_follow_requests(
    actor: CurrentActorDep,
    db: SessionDep,
    relationships: RelationshipsDep,
) -> list[FollowRequestResponse]:
    """List follow requests awaiting a decision."""
    return [
        FollowRequestResponse.model_validate(relation)
        for relation in relationships.pending_requests(db, actor)
    ]


@router.post(
    "/follow-requests/accept",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ActionAccepted,
)
async def accept_follow_request(
    body: FollowerDecision,
    actor: CurrentActorDep,
    db: SessionDep,
    relationships: RelationshipsDep,
) -> ActionAccepted:
    item = await relationships.accept_follower(db, actor, body.peer)
    return ActionAccepted(activity_id=item.activity_id)


@router.post(
    "/follow-requests/reject",
    status_code=status.HTTP_202_ACCEPTED,
    response_model=ActionAccepted,
)
async def reject_follow_request(
    body: FollowerDecision,
    actor: CurrentActorDep,
    db: SessionDep,
    relationships: RelationshipsDep,
) -> ActionAccepted:
    item = await relationships.reject_follower(db, actor, body.peer)
    return ActionAccepted(activity_id=item.activity_id)
