# src/waypost/models/queue.py
"""Durable inbox and outbox rows that double as the work queue."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from waypost.db.session import Base
from waypost.db.time import utcnow


class QueueItemMixin:
    """Columns shared by inbox and outbox rows.

    ``processed`` flips false->true when a worker claims the row. ``completed_at``
    is only written once the row has been fully handled, so a processed row
    without it is an in-flight (or abandoned) claim.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    activity_id: Mapped[str | None] = mapped_column(String(512), index=True, nullable=True)
    activity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    raw_activity: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    @declared_attr
    def owner_actor_id(cls) -> Mapped[str]:  # noqa: N805
        return mapped_column(
            String(32),
            ForeignKey("actors.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )


class InboxItem(QueueItemMixin, Base):
    """An activity received by a local actor, awaiting classification."""

    __tablename__ = "inbox_items"


class OutboxItem(QueueItemMixin, Base):
    """An activity published by a local actor, awaiting delivery."""

    __tablename__ = "outbox_items"
