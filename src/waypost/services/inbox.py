# src/waypost/services/inbox.py
"""Inbound activities: authenticated ingestion and deferred classification."""

from __future__ import annotations

import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from waypost.core.exceptions import ActivityValidationError, PersistenceError, SignatureInvalid
from waypost.core.settings import settings
from waypost.models import Actor, InboxItem, OutboxItem
from waypost.schemas.activity import (
    AcceptActivity,
    CreateActivity,
    FollowActivity,
    LikeActivity,
    RejectActivity,
    UndoActivity,
    parse_activity,
)
from waypost.services.activity_store import ActivityStore
from waypost.services.actors import ensure_remote_stub
from waypost.services.broker import QueueBroker, QueueMessage, notify
from waypost.services.relationships import RelationshipStateMachine
from waypost.services.resolver import ActorResolver
from waypost.services.signatures import SignedRequest, authenticate_request

logger = logging.getLogger(__name__)


async def enqueue_inbox(
    db: Session,
    broker: QueueBroker | None,
    recipient: Actor,
    payload: dict[str, Any],
    *,
    queue_name: str | None = None,
) -> InboxItem:
    """Persist an unprocessed inbox row for ``recipient`` and announce it.

    Raises:
        PersistenceError: If the row cannot be committed.
    """
    try:
        item = ActivityStore.add(db, InboxItem, recipient, payload)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Failed to store inbox activity: {exc}") from exc
    await notify(
        broker,
        queue_name or settings.inbox_queue_name,
        QueueMessage(owner_actor_id=recipient.id, queue_item_id=item.id),
    )
    return item


def _sender(payload: dict[str, Any]) -> str:
    actor = payload.get("actor")
    if isinstance(actor, dict):
        actor = actor.get("id")
    if not isinstance(actor, str) or not actor:
        raise ActivityValidationError("Activity is missing an actor")
    return actor


class InboxIngestor:
    """Accepts signed POSTs to a local actor's inbox."""

    def __init__(self, resolver: ActorResolver, broker: QueueBroker | None) -> None:
        self.resolver = resolver
        self.broker = broker

    async def ingest(self, db: Session, username: str, request: SignedRequest) -> InboxItem:
        """Authenticate, persist and enqueue an inbound activity.

        Nothing is stored unless the signature verifies and the body is a JSON
        object with ``type`` and ``actor`` sent by the signing key's owner.

        Raises:
            ActorNotFound: Unknown recipient.
            AuthenticationError: Missing or invalid signature.
            ActivityValidationError: Malformed body.
            PersistenceError: The row could not be stored.
        """
        recipient = self.resolver.resolve_local(db, username)
        params = await authenticate_request(request, self.resolver.public_key_resolver(db))

        try:
            payload = json.loads(request.body or b"null")
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise ActivityValidationError("Request body is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise ActivityValidationError("Activity must be a JSON object")
        if not isinstance(payload.get("type"), str) or not payload["type"]:
            raise ActivityValidationError("Activity is missing a type")
        sender = _sender(payload)

        if params is not None and params.key_owner != sender:
            logger.warning("Key %s signed an activity for actor %s", params.key_id, sender)
            raise SignatureInvalid("Signing key does not belong to the activity actor")

        known = self.resolver.cached(sender)
        try:
            ensure_remote_stub(db, sender, known.inbox if known else None)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to record sender {sender}") from exc

        item = await enqueue_inbox(db, self.broker, recipient, payload)
        logger.info(
            "Accepted %s %s from %s for %s",
            item.activity_type,
            item.activity_id,
            sender,
            recipient.actor_uri,
        )
        return item


class InboxProcessor:
    """Classifies a claimed inbox row and applies its effects."""

    def __init__(self, relationships: RelationshipStateMachine) -> None:
        self.relationships = relationships

    def process(self, db: Session, item: InboxItem) -> list[OutboxItem]:
        """Dispatch ``item`` by activity type.

        Returns the outbox rows staged as a side effect; they are announced
        once the caller commits.

        Raises:
            ActivityValidationError: Permanent; the row must not be retried.
        """
        recipient = db.get(Actor, item.owner_actor_id)
        if recipient is None or not recipient.is_local:
            raise ActivityValidationError(f"Inbox owner {item.owner_actor_id} no longer exists")

        activity = parse_activity(item.raw_activity)
        if isinstance(activity, FollowActivity):
            return self.relationships.handle_follow(db, recipient, activity)
        if isinstance(activity, AcceptActivity):
            return self.relationships.handle_accept(db, recipient, activity)
        if isinstance(activity, RejectActivity):
            return self.relationships.handle_reject(db, recipient, activity)
        if isinstance(activity, UndoActivity):
            if activity.object_type not in (None, "Follow"):
                logger.info("Ignoring Undo of %s from %s", activity.object_type, activity.actor)
                return []
            return self.relationships.handle_undo(db, recipient, activity)
        if isinstance(activity, CreateActivity):
            logger.info(
                "Received Create of %s %s from %s",
                activity.object_type,
                activity.object_id,
                activity.actor,
            )
            return []
        if isinstance(activity, LikeActivity):
            logger.info("%s liked %s", activity.actor, activity.object_id)
            return []

        logger.info("Skipping unsupported activity type %s from %s", activity.type, activity.actor)
        return []
