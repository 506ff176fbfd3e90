# src/waypost/models/relationship.py
"""Follower and following relations between local actors and peers."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from waypost.db.session import Base
from waypost.db.time import utcnow


class RelationState(str, Enum):
    """Lifecycle of a follow request."""

    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class FollowerRelation(Base):
    """A peer following a local actor (the subject)."""

    __tablename__ = "followers"
    __table_args__ = (
        UniqueConstraint("subject_actor_id", "peer_actor_uri", name="uq_followers_subject_peer"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    subject_actor_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    peer_actor_uri: Mapped[str] = mapped_column(String(512), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default=RelationState.PENDING.value)
    follow_activity_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )


class FollowingRelation(Base):
    """A local actor following a peer."""

    __tablename__ = "following"
    __table_args__ = (
        UniqueConstraint("actor_id", "peer_actor_uri", name="uq_following_actor_peer"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    actor_id: Mapped[str] = mapped_column(
        String(32), ForeignKey("actors.id", ondelete="CASCADE"), nullable=False, index=True
    )
    peer_actor_uri: Mapped[str] = mapped_column(String(512), nullable=False)
    state: Mapped[str] = mapped_column(String(16), nullable=False, default=RelationState.PENDING.value)
    follow_activity_id: Mapped[str | None] = mapped_column(String(512), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
