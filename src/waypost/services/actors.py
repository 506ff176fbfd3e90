# src/waypost/services/actors.py
"""Local actor lifecycle, actor documents and WebFinger lookups."""

from __future__ import annotations

import logging
import re

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from waypost.core.exceptions import ActorNotFound
from waypost.core.settings import settings
from waypost.models import Actor
from waypost.schemas.actor import (
    ActorDocument,
    PublicKeyDocument,
    WebFingerLink,
    WebFingerResponse,
)
from waypost.services.crypto import CryptoService

logger = logging.getLogger(__name__)

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_.-]{0,63}$")
ACCT_PATTERN = re.compile(r"^acct:([^@]+)@(.+)$")
ACTIVITY_JSON = "application/activity+json"


def actor_uri_for(username: str) -> str:
    """Return the canonical actor URI of a local username."""
    return f"{settings.base_url}/users/{username}"


def create_local_actor(
    db: Session,
    username: str,
    *,
    display_name: str | None = None,
    summary: str | None = None,
) -> Actor:
    """Create a local actor with a freshly generated RSA key pair.

    Raises:
        ValueError: If the username is invalid or already taken.
    """
    if not USERNAME_PATTERN.match(username):
        raise ValueError(f"Invalid username: {username!r}")

    private_pem, public_pem = CryptoService.generate_key_pair()
    actor_uri = actor_uri_for(username)
    actor = Actor(
        username=username,
        actor_uri=actor_uri,
        display_name=display_name or username,
        summary=summary,
        inbox_uri=f"{actor_uri}/inbox",
        outbox_uri=f"{actor_uri}/outbox",
        followers_uri=f"{actor_uri}/followers",
        following_uri=f"{actor_uri}/following",
        public_key=public_pem,
        private_key=private_pem,
    )
    db.add(actor)
    try:
        db.commit()
    except IntegrityError as err:
        db.rollback()
        raise ValueError(f"Username already taken: {username}") from err
    db.refresh(actor)
    logger.info("Created local actor %s", actor_uri)
    return actor


def ensure_remote_stub(db: Session, actor_uri: str, inbox_uri: str | None = None) -> Actor:
    """Return the stored row for ``actor_uri``, creating a keyless stub if needed.

    The caller owns the transaction; the new row is only flushed.
    """
    actor = db.scalar(select(Actor).where(Actor.actor_uri == actor_uri))
    if actor is not None:
        if inbox_uri and not actor.is_local and actor.inbox_uri != inbox_uri:
            actor.inbox_uri = inbox_uri
        return actor

    actor = Actor(
        actor_uri=actor_uri,
        inbox_uri=inbox_uri or f"{actor_uri.rstrip('/')}/inbox",
    )
    db.add(actor)
    db.flush()
    logger.debug("Recorded remote actor stub %s", actor_uri)
    return actor


def actor_document(actor: Actor) -> dict[str, object]:
    """Render the JSON-LD document published for a local actor."""
    document = ActorDocument(
        id=actor.actor_uri,
        preferred_username=actor.username,
        name=actor.display_name,
        summary=actor.summary,
        inbox=actor.inbox_uri,
        outbox=actor.outbox_uri,
        followers=actor.followers_uri,
        following=actor.following_uri,
        public_key=PublicKeyDocument(
            id=actor.key_id,
            owner=actor.actor_uri,
            public_key_pem=actor.public_key or "",
        ),
    )
    return document.model_dump(by_alias=True)


def parse_acct_resource(resource: str) -> tuple[str, str]:
    """Split ``acct:user@domain`` into its parts.

    Raises:
        ValueError: If the resource is not an ``acct:`` URI.
    """
    match = ACCT_PATTERN.match(resource.strip())
    if not match:
        raise ValueError("Invalid resource format")
    return match.group(1), match.group(2)


def webfinger(db: Session, resource: str) -> WebFingerResponse:
    """Answer a WebFinger query for one of this instance's actors.

    Raises:
        ValueError: If ``resource`` is malformed.
        ActorNotFound: If the domain is not ours or the user does not exist.
    """
    username, domain = parse_acct_resource(resource)
    if domain.lower() != settings.domain.lower():
        raise ActorNotFound("Resource not found")

    actor = db.scalar(
        select(Actor).where(Actor.username == username, Actor.private_key.is_not(None))
    )
    if actor is None:
        raise ActorNotFound("Resource not found")

    return WebFingerResponse(
        subject=f"acct:{username}@{settings.domain}",
        aliases=[actor.actor_uri],
        links=[WebFingerLink(rel="self", type=ACTIVITY_JSON, href=actor.actor_uri)],
    )
