# src/waypost/services/activities.py
"""Builders for the activities local actors publish."""

from __future__ import annotations

import uuid
from typing import Any

from waypost.core.exceptions import ActivityValidationError
from waypost.db.time import utcnow
from waypost.models import Actor
from waypost.schemas.activity import (
    AS_CONTEXT,
    PUBLIC_ALIASES,
    PUBLIC_COLLECTION,
    Activity,
    FollowActivity,
    UndoActivity,
)

# Activity types that go to a single peer instead of fanning out to followers
DIRECTED_TYPES = frozenset({"Follow", "Accept", "Reject", "Undo"})
# Bare objects a client may post; they are wrapped in a Create
OBJECT_TYPES = frozenset({"Note", "Article", "Page", "Image", "Video", "Event", "Place", "Question"})


def new_activity_id(actor: Actor) -> str:
    return f"{actor.actor_uri}/activities/{uuid.uuid4().hex}"


def _published() -> str:
    return utcnow().strftime("%Y-%m-%dT%H:%M:%SZ")


def _envelope(actor: Actor, activity_type: str, obj: Any, **extra: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "@context": AS_CONTEXT,
        "id": new_activity_id(actor),
        "type": activity_type,
        "actor": actor.actor_uri,
        "object": obj,
        "published": _published(),
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


def build_follow(actor: Actor, target_uri: str) -> dict[str, Any]:
    return _envelope(actor, "Follow", target_uri, to=[target_uri])


def build_accept(actor: Actor, follow: dict[str, Any]) -> dict[str, Any]:
    """Accept ``follow`` on behalf of its object, addressed to the follower."""
    return _envelope(actor, "Accept", follow, to=[follow["actor"]])


def build_reject(actor: Actor, follow: dict[str, Any]) -> dict[str, Any]:
    return _envelope(actor, "Reject", follow, to=[follow["actor"]])


def build_undo_follow(actor: Actor, follow: dict[str, Any]) -> dict[str, Any]:
    """Withdraw a Follow previously sent by ``actor``."""
    return _envelope(actor, "Undo", follow, to=[follow["object"]])


def reconstruct_follow(
    follower_uri: str, target_uri: str, follow_activity_id: str | None
) -> dict[str, Any]:
    """Rebuild a Follow from a stored relation when the original is not kept."""
    follow: dict[str, Any] = {"type": "Follow", "actor": follower_uri, "object": target_uri}
    if follow_activity_id:
        follow["id"] = follow_activity_id
    return follow


def build_create(
    actor: Actor,
    obj: dict[str, Any],
    *,
    to: list[str] | None = None,
    cc: list[str] | None = None,
) -> dict[str, Any]:
    """Wrap ``obj`` in a Create addressed publicly and to the actor's followers."""
    to = to if to is not None else [PUBLIC_COLLECTION]
    cc = cc if cc is not None else [actor.followers_uri] if actor.followers_uri else []
    obj = {"attributedTo": actor.actor_uri, "to": to, "cc": cc, **obj}
    obj.setdefault("published", _published())
    if "id" not in obj:
        obj["id"] = f"{actor.actor_uri}/objects/{uuid.uuid4().hex}"
    return _envelope(actor, "Create", obj, to=to, cc=cc)


def complete_client_activity(actor: Actor, payload: dict[str, Any]) -> dict[str, Any]:
    """Fill ``id`` and ``actor`` of a client-submitted activity.

    Bare objects such as a Note are wrapped in a Create. A payload claiming
    a different actor is rejected.

    Raises:
        ActivityValidationError: If the payload names another actor.
    """
    claimed = payload.get("actor")
    if isinstance(claimed, dict):
        claimed = claimed.get("id")
    if claimed is not None and claimed != actor.actor_uri:
        raise ActivityValidationError("Activity actor does not match the authenticated actor")

    if claimed is None and payload.get("type") in OBJECT_TYPES:
        return build_create(actor, dict(payload))

    completed = {"@context": AS_CONTEXT, **payload, "actor": actor.actor_uri}
    completed.setdefault("id", new_activity_id(actor))
    completed.setdefault("published", _published())
    return completed


def directed_target(activity: Activity) -> str | None:
    """Return the single peer a directed activity must reach.

    Follow goes to its object, Accept/Reject to the follower named in the
    embedded Follow, Undo{Follow} to the followed actor. Bare-id objects fall
    back to the first explicit addressee.
    """
    if isinstance(activity, FollowActivity):
        return activity.target
    if activity.type in {"Accept", "Reject"} and isinstance(activity.object, dict):
        follower = activity.object.get("actor")
        if isinstance(follower, str):
            return follower
    if isinstance(activity, UndoActivity) and isinstance(activity.object, dict):
        followed = activity.object.get("object")
        if isinstance(followed, dict):
            followed = followed.get("id")
        if isinstance(followed, str):
            return followed
    recipients = [uri for uri in activity.recipients if uri not in PUBLIC_ALIASES]
    return recipients[0] if recipients else None
