# src/waypost/services/outbox.py
"""Stage outbox rows and wake the delivery worker."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from waypost.core.exceptions import PersistenceError
from waypost.core.settings import settings
from waypost.models import Actor, OutboxItem
from waypost.services.activity_store import ActivityStore
from waypost.services.broker import QueueBroker, QueueMessage, notify

logger = logging.getLogger(__name__)


class OutboxService:
    """Writes outgoing activities to the outbox table."""

    def __init__(self, broker: QueueBroker | None, queue_name: str | None = None) -> None:
        self.broker = broker
        self.queue_name = queue_name or settings.outbox_queue_name

    def stage(self, db: Session, actor: Actor, payload: dict[str, Any]) -> OutboxItem:
        """Add an unprocessed outbox row to the current transaction."""
        item = ActivityStore.add(db, OutboxItem, actor, payload)
        logger.debug("Staged %s %s for %s", item.activity_type, item.activity_id, actor.actor_uri)
        return item

    async def notify(self, items: Iterable[OutboxItem]) -> None:
        """Publish a reference for each committed row."""
        for item in items:
            await notify(
                self.broker,
                self.queue_name,
                QueueMessage(owner_actor_id=item.owner_actor_id, queue_item_id=item.id),
            )

    async def publish(self, db: Session, actor: Actor, payload: dict[str, Any]) -> OutboxItem:
        """Stage, commit and announce a single activity.

        Raises:
            PersistenceError: If the row cannot be committed.
        """
        item = self.stage(db, actor, payload)
        await self.commit_and_notify(db, [item])
        return item

    async def commit_and_notify(self, db: Session, items: list[OutboxItem]) -> None:
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to store outbox activity: {exc}") from exc
        await self.notify(items)
