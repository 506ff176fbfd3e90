"""Client-to-server outbox endpoint."""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, HTTPException, Request, status
from fastapi.responses import JSONResponse

from waypost.api.v1.dependencies import CurrentActorDep, RelationshipsDep, SessionDep
from waypost.core.exceptions import ActivityValidationError
from waypost.schemas.activity import FollowActivity, UndoActivity, parse_activity
from waypost.services.activities import complete_client_activity, directed_target

logger = logging.getLogger(__name__)

ACTIVITY_CONTENT_TYPES = frozenset({"application/activity+json", "application/ld+json"})

router = APIRouter(prefix="/users", tags=["federation"])


@router.post("/{username}/outbox", status_code=status.HTTP_202_ACCEPTED)
async def post_outbox(
    username: str,
    request: Request,
    db: SessionDep,
    actor: CurrentActorDep,
    relationships: RelationshipsDep,
) -> JSONResponse:
    """Publish an activity on behalf of the authenticated actor.

    Follow and Undo{Follow} go through the relationship state machine so the
    local relation tables stay in step; everything else is stored and fanned
    out by the outbox worker.
    """
    if actor.username != username:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Cannot post to another actor's outbox",
        )

    content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    if content_type not in ACTIVITY_CONTENT_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail="Content-Type must be application/activity+json or application/ld+json",
        )

    try:
        payload = json.loads(await request.body())
    except (UnicodeDecodeError, json.JSONDecodeError) as err:
        raise ActivityValidationError("Request body is not valid JSON") from err
    if not isinstance(payload, dict) or not payload.get("type"):
        raise ActivityValidationError("Activity must be a JSON object with a type")

    payload = complete_client_activity(actor, payload)
    activity = parse_activity(payload)

    if isinstance(activity, FollowActivity):
        item = await relationships.follow(db, actor, activity.target)
    elif isinstance(activity, UndoActivity) and activity.object_type in (None, "Follow"):
        target = directed_target(activity)
        if target is None:
            raise ActivityValidationError("Undo does not name the followed actor")
        item = await relationships.unfollow(db, actor, target)
    else:
        item = await relationships.outbox.publish(db, actor, payload)

    activity_id = item.activity_id if item is not None else None
    logger.info("%s published %s %s", actor.actor_uri, activity.type, activity_id)
    headers = {"Location": activity_id} if activity_id else None
    return JSONResponse(
        {"status": "Accepted", "activity_id": activity_id},
        status_code=status.HTTP_202_ACCEPTED,
        headers=headers,
    )
