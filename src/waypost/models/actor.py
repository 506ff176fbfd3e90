# src/waypost/models/actor.py
"""SQLAlchemy model for local actors and keyless remote actor stubs."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from waypost.db.session import Base
from waypost.db.time import utcnow


def _new_actor_id() -> str:
    return uuid.uuid4().hex


class Actor(Base):
    """A federated identity.

    Local actors own an RSA keypair generated at creation. Remote actors are
    resolved on demand; a row without keys may exist as a stub recording the
    last known inbox of a sender we have heard from.
    """

    __tablename__ = "actors"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_actor_id)
    username: Mapped[str | None] = mapped_column(String(64), unique=True, nullable=True)
    actor_uri: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    display_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    inbox_uri: Mapped[str] = mapped_column(String(512), nullable=False)
    outbox_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    followers_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    following_uri: Mapped[str | None] = mapped_column(String(512), nullable=True)
    public_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    private_key: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    @property
    def is_local(self) -> bool:
        """Return True when this instance holds the actor's private key."""
        return self.private_key is not None

    @property
    def key_id(self) -> str:
        """Return the keyId advertised in the actor document."""
        return f"{self.actor_uri}#main-key"
