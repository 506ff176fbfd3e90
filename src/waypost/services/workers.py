# src/waypost/services/workers.py
"""Background workers draining the inbox and outbox tables.

Each worker runs one asyncio loop: recover stale claims, claim a bounded batch
oldest first and process it in claim order. When the table is empty the loop
waits for a broker message (or just sleeps without a broker) before polling
again. ``stop`` lets the in-flight batch finish.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable, Sequence
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from waypost.core.exceptions import (
    ActivityValidationError,
    BrokerError,
    DeliveryError,
    FederationError,
    PersistenceError,
    ResolutionError,
)
from waypost.core.settings import settings
from waypost.db.session import SessionLocal
from waypost.models import Actor, InboxItem, OutboxItem
from waypost.schemas.activity import PUBLIC_ALIASES, Activity, parse_activity
from waypost.services.activities import DIRECTED_TYPES, directed_target
from waypost.services.activity_store import ActivityStore
from waypost.services.broker import QueueBroker
from waypost.services.delivery import DeliveryClient
from waypost.services.inbox import InboxProcessor, enqueue_inbox
from waypost.services.outbox import OutboxService
from waypost.services.relationships import RelationshipStateMachine
from waypost.services.resolver import ActorResolver

logger = logging.getLogger(__name__)


def is_transient(exc: Exception) -> bool:
    """Return True when ``exc`` leaves the row intact for another attempt."""
    if isinstance(exc, FederationError):
        return exc.retryable
    return isinstance(exc, SQLAlchemyError)


class QueueWorker:
    """Shared poll/claim/process loop for one queue table."""

    model: type[InboxItem] | type[OutboxItem]
    name = "queue-worker"

    def __init__(
        self,
        broker: QueueBroker | None,
        *,
        queue_name: str,
        batch_size: int,
        poll_interval_seconds: float | None = None,
        claim_timeout_seconds: float | None = None,
        session_factory: Callable[[], Session] | None = None,
    ) -> None:
        self.broker = broker
        self.queue_name = queue_name
        self.batch_size = max(1, batch_size)
        self.poll_interval_seconds = max(
            0.1,
            float(poll_interval_seconds or settings.worker_poll_interval_seconds),
        )
        self.claim_timeout_seconds = (
            settings.claim_timeout_seconds if claim_timeout_seconds is None else claim_timeout_seconds
        )
        self._session_factory = session_factory or SessionLocal
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background loop."""
        if self.running:
            return
        if self.broker is not None:
            try:
                await self.broker.recover(self.queue_name)
            except BrokerError as exc:
                logger.warning("%s could not recover parked messages: %s", self.name, exc)
        self._stopping.clear()
        self._task = asyncio.create_task(self._run(), name=self.name)
        logger.info("%s started", self.name)

    async def stop(self) -> None:
        """Stop the loop once the current batch is finished."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("%s stopped", self.name)

    async def _run(self) -> None:
        backoff = min(self.poll_interval_seconds * 4, 30.0)
        while not self._stopping.is_set():
            try:
                handled = await self.run_once()
                if handled == 0 and not self._stopping.is_set():
                    await self._wait_for_message()
            except (BrokerError, PersistenceError, SQLAlchemyError) as exc:
                logger.warning("%s backing off after error: %s", self.name, exc)
                await self._sleep(backoff)
            except Exception as exc:
                logger.error("%s encountered unexpected error: %s", self.name, exc, exc_info=True)
                await self._sleep(backoff)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=seconds)
        except TimeoutError:
            return

    async def run_once(self) -> int:
        """Recover stale claims, then claim and process one batch.

        Returns the number of rows claimed.
        """
        with self._session_factory() as db:
            ActivityStore.requeue_stale_claims(db, self.model, self.claim_timeout_seconds)
            items = ActivityStore.claim_batch(db, self.model, self.batch_size)
            for item in items:
                await self.process_item(db, item)
            return len(items)

    async def _wait_for_message(self) -> None:
        if self.broker is None:
            await self._sleep(self.poll_interval_seconds)
            return
        delivery = await self.broker.consume(self.queue_name, self.poll_interval_seconds)
        if delivery is None:
            return
        try:
            await self.process_reference(delivery.message.queue_item_id)
        except Exception:
            await self.broker.nack(delivery)
            raise
        await self.broker.ack(delivery)

    async def process_reference(self, item_id: int) -> bool:
        """Claim and process the row a broker message points at.

        Returns False when the row was already claimed elsewhere or is gone.
        """
        with self._session_factory() as db:
            item = ActivityStore.claim_item(db, self.model, item_id)
            if item is None:
                logger.debug("%s: row %s already claimed", self.name, item_id)
                return False
            await self.process_item(db, item)
            return True

    async def process_item(self, db: Session, item: Any) -> None:
        raise NotImplementedError

    def _fail_permanently(self, db: Session, item_id: int, exc: Exception) -> None:
        db.rollback()
        logger.warning("%s: dropping %s row %s: %s", self.name, self.model.__tablename__, item_id, exc)
        item = db.get(self.model, item_id)
        if item is not None:
            ActivityStore.mark_completed(db, item, error=str(exc))

    def _fail_transiently(self, db: Session, item_id: int, attempts: int, exc: Exception) -> None:
        db.rollback()
        logger.warning(
            "%s: re-queueing %s row %s after attempt %d: %s",
            self.name,
            self.model.__tablename__,
            item_id,
            attempts,
            exc,
        )
        ActivityStore.requeue(db, self.model, item_id, str(exc))


class InboxWorker(QueueWorker):
    """Classifies received activities and applies relationship effects."""

    model = InboxItem
    name = "inbox-worker"

    def __init__(
        self,
        broker: QueueBroker | None,
        processor: InboxProcessor,
        *,
        session_factory: Callable[[], Session] | None = None,
        **options: Any,
    ) -> None:
        options.setdefault("queue_name", settings.inbox_queue_name)
        options.setdefault("batch_size", settings.inbox_batch_size)
        super().__init__(broker, session_factory=session_factory, **options)
        self.processor = processor

    async def process_item(self, db: Session, item: InboxItem) -> None:
        item_id, attempts = item.id, item.attempts
        try:
            staged = self.processor.process(db, item)
            ActivityStore.mark_completed(db, item)
        except (FederationError, SQLAlchemyError) as exc:
            if is_transient(exc):
                self._fail_transiently(db, item_id, attempts, exc)
            else:
                self._fail_permanently(db, item_id, exc)
            return
        await self.processor.relationships.outbox.notify(staged)


class OutboxDeliveryWorker(QueueWorker):
    """Fans published activities out to their destinations."""

    model = OutboxItem
    name = "outbox-worker"

    def __init__(
        self,
        broker: QueueBroker | None,
        resolver: ActorResolver,
        delivery: DeliveryClient,
        relationships: RelationshipStateMachine,
        *,
        session_factory: Callable[[], Session] | None = None,
        max_attempts: int | None = None,
        **options: Any,
    ) -> None:
        options.setdefault("queue_name", settings.outbox_queue_name)
        options.setdefault("batch_size", settings.outbox_batch_size)
        super().__init__(broker, session_factory=session_factory, **options)
        self.resolver = resolver
        self.delivery = delivery
        self.relationships = relationships
        self.max_attempts = settings.outbox_max_attempts if max_attempts is None else max_attempts

    async def destinations(
        self, db: Session, owner: Actor, activity: Activity
    ) -> list[tuple[str, str]]:
        """Return ``(actor_uri, inbox_uri)`` pairs, one per distinct inbox.

        Raises:
            ActivityValidationError: A directed activity names no target.
        """
        if activity.type in DIRECTED_TYPES:
            target = directed_target(activity)
            if target is None:
                raise ActivityValidationError(f"{activity.type} {activity.id} has no target actor")
            candidates = [target]
        else:
            skipped = set(PUBLIC_ALIASES) | {owner.actor_uri}
            if owner.followers_uri:
                skipped.add(owner.followers_uri)
            candidates = self.relationships.followers(db, owner) + [
                uri for uri in activity.recipients if uri not in skipped
            ]

        pairs: list[tuple[str, str]] = []
        seen_inboxes: set[str] = set()
        for actor_uri in dict.fromkeys(candidates):
            inbox = await self.resolver.resolve_inbox(db, actor_uri)
            if inbox in seen_inboxes:
                continue
            seen_inboxes.add(inbox)
            pairs.append((actor_uri, inbox))
        return pairs

    async def _deliver_to(
        self, db: Session, owner: Actor, payload: dict[str, Any], actor_uri: str, inbox: str
    ) -> bool:
        local = self.resolver.find_local(db, actor_uri)
        if local is not None:
            await enqueue_inbox(db, self.broker, local, payload)
            logger.debug("Delivered %s locally to %s", payload.get("id"), actor_uri)
            return True
        try:
            await self.delivery.deliver(inbox, payload, owner)
        except DeliveryError as exc:
            logger.warning("Delivery of %s to %s failed: %s", payload.get("id"), inbox, exc)
            return False
        return True

    async def process_item(self, db: Session, item: OutboxItem) -> None:
        item_id, attempts = item.id, item.attempts
        try:
            owner = db.get(Actor, item.owner_actor_id)
            if owner is None or not owner.is_local:
                raise ResolutionError(f"Outbox owner {item.owner_actor_id} is not a local actor")
            payload = item.raw_activity
            activity = parse_activity(payload)
            targets = await self.destinations(db, owner, activity)

            delivered_count = 0
            for actor_uri, inbox in targets:
                delivered = await self._deliver_to(db, owner, payload, actor_uri, inbox)
                delivered_count += int(delivered)
                if activity.type in DIRECTED_TYPES:
                    self.relationships.apply_delivery_result(db, owner, activity, actor_uri, delivered)
            ActivityStore.mark_completed(db, item)
            logger.info(
                "Delivered %s %s to %d/%d destinations",
                activity.type,
                activity.id,
                delivered_count,
                len(targets),
            )
        except (FederationError, SQLAlchemyError) as exc:
            if not is_transient(exc):
                self._fail_permanently(db, item_id, exc)
                return
            if self.max_attempts and attempts >= self.max_attempts:
                db.rollback()
                logger.error("Dead-lettering outbox row %s after %d attempts: %s", item_id, attempts, exc)
                ActivityStore.dead_letter(db, OutboxItem, item_id, str(exc))
                return
            self._fail_transiently(db, item_id, attempts, exc)


def build_workers(
    broker: QueueBroker | None,
    resolver: ActorResolver,
    delivery: DeliveryClient,
    *,
    session_factory: Callable[[], Session] | None = None,
) -> list[QueueWorker]:
    """Wire the inbox and outbox workers around shared services."""
    relationships = RelationshipStateMachine(OutboxService(broker))
    return [
        InboxWorker(broker, InboxProcessor(relationships), session_factory=session_factory),
        OutboxDeliveryWorker(
            broker,
            resolver,
            delivery,
            relationships,
            session_factory=session_factory,
        ),
    ]


async def run_forever(workers: Sequence[QueueWorker]) -> None:
    """Run ``workers`` until SIGINT or SIGTERM, then stop them gracefully."""
    stop_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_requested.set)
        except NotImplementedError:  # pragma: no cover - Windows event loops
            signal.signal(signum, lambda *_: loop.call_soon_threadsafe(stop_requested.set))

    for worker in workers:
        await worker.start()
    try:
        await stop_requested.wait()
    finally:
        for worker in workers:
            try:
                await worker.stop()
            except FederationError as exc:
                logger.warning("%s did not stop cleanly: %s", worker.name, exc)
