# src/waypost/services/activity_store.py
"""Queue bookkeeping over the inbox and outbox tables.

A row is claimed by flipping ``processed`` false->true with a conditional
UPDATE, after locking candidates with ``FOR UPDATE SKIP LOCKED`` where the
database supports it. Exactly one claimer wins each row. A claimed row is
finished by stamping ``completed_at`` or handed back with ``requeue``.
"""

from __future__ import annotations

import logging
from typing import Any, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from waypost.core.exceptions import PersistenceError
from waypost.db.time import seconds_ago, utcnow
from waypost.models import Actor, InboxItem, OutboxItem

logger = logging.getLogger(__name__)

QueueItem = TypeVar("QueueItem", InboxItem, OutboxItem)

# last_error is kept short enough to stay readable in logs and admin views
MAX_ERROR_LENGTH = 2000


def _truncate(error: str) -> str:
    return error if len(error) <= MAX_ERROR_LENGTH else error[: MAX_ERROR_LENGTH - 3] + "..."


class ActivityStore:
    """Stateless helpers; every method works on the session it is given."""

    @staticmethod
    def add(
        db: Session,
        model: type[QueueItem],
        owner: Actor,
        payload: dict[str, Any],
    ) -> QueueItem:
        """Stage a new unprocessed row. The caller commits."""
        item = model(
            owner_actor_id=owner.id,
            activity_id=payload.get("id") if isinstance(payload.get("id"), str) else None,
            activity_type=str(payload.get("type") or "Unknown"),
            raw_activity=payload,
            processed=False,
            attempts=0,
        )
        db.add(item)
        db.flush()
        return item

    @staticmethod
    def claim_batch(db: Session, model: type[QueueItem], limit: int) -> list[QueueItem]:
        """Claim up to ``limit`` unprocessed rows, oldest first, and commit the claim.

        Raises:
            PersistenceError: If the database rejects the claim.
        """
        try:
            candidate_ids = db.scalars(
                select(model.id)
                .where(model.processed.is_(False))
                .order_by(model.created_at, model.id)
                .limit(limit)
                .with_for_update(skip_locked=True)
            ).all()

            claimed_at = utcnow()
            claimed_ids = [
                item_id
                for item_id in candidate_ids
                if ActivityStore._flip(db, model, item_id, claimed_at)
            ]
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to claim {model.__tablename__} rows: {exc}") from exc

        if not claimed_ids:
            return []
        return list(
            db.scalars(
                select(model).where(model.id.in_(claimed_ids)).order_by(model.created_at, model.id)
            ).all()
        )

    @staticmethod
    def claim_item(db: Session, model: type[QueueItem], item_id: int) -> QueueItem | None:
        """Claim a single row by id; return None if another worker already holds it."""
        try:
            won = ActivityStore._flip(db, model, item_id, utcnow())
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to claim {model.__tablename__} row {item_id}") from exc
        if not won:
            return None
        return db.get(model, item_id)

    @staticmethod
    def _flip(db: Session, model: type[QueueItem], item_id: int, claimed_at: Any) -> bool:
        result = db.execute(
            update(model)
            .where(model.id == item_id, model.processed.is_(False))
            .values(
                processed=True,
                claimed_at=claimed_at,
                completed_at=None,
                attempts=model.attempts + 1,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def mark_completed(db: Session, item: QueueItem, error: str | None = None) -> None:
        """Finish a claimed row. ``error`` records a permanent, non-retried failure."""
        item.completed_at = utcnow()
        if error is not None:
            item.last_error = _truncate(error)
        try:
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to complete row {item.id}") from exc

    @staticmethod
    def requeue(db: Session, model: type[QueueItem], item_id: int, error: str) -> None:
        """Hand a claimed row back to the queue after a transient failure.

        Call after rolling back the failed unit of work.
        """
        db.execute(
            update(model)
            .where(model.id == item_id)
            .values(processed=False, claimed_at=None, last_error=_truncate(error))
            .execution_options(synchronize_session=False)
        )
        db.commit()

    @staticmethod
    def dead_letter(db: Session, model: type[QueueItem], item_id: int, error: str) -> None:
        """Park a row that exhausted its attempts; it stays processed."""
        db.execute(
            update(model)
            .where(model.id == item_id)
            .values(completed_at=utcnow(), last_error=_truncate(f"dead-lettered: {error}"))
            .execution_options(synchronize_session=False)
        )
        db.commit()

    @staticmethod
    def requeue_stale_claims(db: Session, model: type[QueueItem], timeout_seconds: float) -> int:
        """Reset claims abandoned for longer than ``timeout_seconds``.

        A worker that dies between committing its claim and completing the row
        leaves ``processed`` true with no ``completed_at``.
        """
        if timeout_seconds <= 0:
            return 0
        try:
            result = db.execute(
                update(model)
                .where(
                    model.processed.is_(True),
                    model.completed_at.is_(None),
                    model.claimed_at.is_not(None),
                    model.claimed_at < seconds_ago(timeout_seconds),
                )
                .values(processed=False, claimed_at=None, last_error="claim timed out")
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to recover stale {model.__tablename__} claims") from exc
        recovered = result.rowcount or 0
        if recovered:
            logger.warning("Re-queued %d stale %s claims", recovered, model.__tablename__)
        return recovered

    @staticmethod
    def list_for_owner(
        db: Session, model: type[QueueItem], owner: Actor, limit: int = 20
    ) -> list[QueueItem]:
        """Return the newest rows owned by ``owner``."""
        return list(
            db.scalars(
                select(model)
                .where(model.owner_actor_id == owner.id)
                .order_by(model.created_at.desc(), model.id.desc())
                .limit(limit)
            ).all()
        )
