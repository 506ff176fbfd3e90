"""Actor documents and their public collections."""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from waypost.api.v1.dependencies import RelationshipsDep, ResolverDep, SessionDep
from waypost.models import OutboxItem
from waypost.schemas.actor import OrderedCollection
from waypost.services.activity_store import ActivityStore
from waypost.services.actors import actor_document

ACTIVITY_JSON = "application/activity+json"
OUTBOX_PAGE_SIZE = 20

router = APIRouter(prefix="/users", tags=["federation"])


class ActivityJSONResponse(JSONResponse):
    media_type = ACTIVITY_JSON


def _collection(collection_id: str, items: list[object]) -> ActivityJSONResponse:
    collection = OrderedCollection(id=collection_id, total_items=len(items), ordered_items=items)
    return ActivityJSONResponse(collection.model_dump(by_alias=True))


@router.get("/{username}")
async def get_actor(username: str, db: SessionDep, resolver: ResolverDep) -> ActivityJSONResponse:
    """Return the JSON-LD document of a local actor."""
    actor = resolver.resolve_local(db, username)
    return ActivityJSONResponse(actor_document(actor))


@router.get("/{username}/followers")
async def get_followers(
    username: str,
    db: SessionDep,
    resolver: ResolverDep,
    relationships: RelationshipsDep,
) -> ActivityJSONResponse:
    actor = resolver.resolve_local(db, username)
    return _collection(
        actor.followers_uri or f"{actor.actor_uri}/followers",
        list(relationships.followers(db, actor)),
    )


@router.get("/{username}/following")
async def get_following(
    username: str,
    db: SessionDep,
    resolver: ResolverDep,
    relationships: RelationshipsDep,
) -> ActivityJSONResponse:
    actor = resolver.resolve_local(db, username)
    return _collection(
        actor.following_uri or f"{actor.actor_uri}/following",
        list(relationships.following(db, actor)),
    )


@router.get("/{username}/outbox")
async def get_outbox(username: str, db: SessionDep, resolver: ResolverDep) -> ActivityJSONResponse:
    """Return the actor's most recent published activities."""
    actor = resolver.resolve_local(db, username)
    items = ActivityStore.list_for_owner(db, OutboxItem, actor, limit=OUTBOX_PAGE_SIZE)
    return _collection(
        actor.outbox_uri or f"{actor.actor_uri}/outbox",
        [item.raw_activity for item in items],
    )
