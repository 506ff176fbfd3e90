# src/waypost/services/resolver.py
"""Actor and public key resolution.

Local actors come from the database. Remote actors are fetched over HTTP as
``application/activity+json`` and cached in-process for a bounded time. The
resolver never reads or stores a remote private key.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from threading import Lock

import httpx
from pydantic import ValidationError
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from waypost.core.exceptions import ActorNotFound, ActorUnreachable, KeyUnavailable, ResolutionError
from waypost.core.settings import settings
from waypost.models import Actor
from waypost.schemas.actor import ActorDocument
from waypost.services.signatures import key_owner

logger = logging.getLogger(__name__)

ACTIVITY_JSON_ACCEPT = "application/activity+json, application/ld+json"
HTTP_OK = 200


@dataclass(frozen=True)
class ResolvedActor:
    """Public view of an actor, local or remote."""

    actor_uri: str
    inbox: str
    outbox: str | None = None
    followers: str | None = None
    following: str | None = None
    public_key_pem: str | None = None
    name: str | None = None
    preferred_username: str | None = None
    summary: str | None = None
    is_local: bool = False

    @classmethod
    def from_model(cls, actor: Actor) -> ResolvedActor:
        return cls(
            actor_uri=actor.actor_uri,
            inbox=actor.inbox_uri,
            outbox=actor.outbox_uri,
            followers=actor.followers_uri,
            following=actor.following_uri,
            public_key_pem=actor.public_key,
            name=actor.display_name,
            preferred_username=actor.username,
            summary=actor.summary,
            is_local=actor.is_local,
        )

    @classmethod
    def from_document(cls, document: ActorDocument) -> ResolvedActor:
        return cls(
            actor_uri=document.id,
            inbox=document.inbox,
            outbox=document.outbox,
            followers=document.followers,
            following=document.following,
            public_key_pem=document.public_key.public_key_pem if document.public_key else None,
            name=document.name,
            preferred_username=document.preferred_username,
            summary=document.summary,
        )


class ActorResolver:
    """Resolves actors locally first, then over HTTP with a TTL cache."""

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        cache_ttl_seconds: float | None = None,
        cache_max_entries: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or settings.http_timeout_seconds
        self.cache_ttl_seconds = (
            settings.actor_cache_ttl_seconds if cache_ttl_seconds is None else cache_ttl_seconds
        )
        self.cache_max_entries = cache_max_entries or settings.actor_cache_max_entries
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self._cache: OrderedDict[str, tuple[float, ResolvedActor]] = OrderedDict()
        self._cache_lock = Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout_seconds),
                    headers={"User-Agent": settings.http_user_agent},
                    follow_redirects=True,
                    transport=self._transport,
                )
        return self._client

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    # --- cache ---------------------------------------------------------------------

    def cached(self, actor_uri: str) -> ResolvedActor | None:
        """Return a fresh cache entry without any network access."""
        entry = self._cache.get(actor_uri)
        if entry is None:
            return None
        expires_at, actor = entry
        if expires_at < time.monotonic():
            self.invalidate(actor_uri)
            return None
        return actor

    def _remember(self, actor_uri: str, actor: ResolvedActor) -> None:
        if self.cache_ttl_seconds <= 0:
            return
        expires_at = time.monotonic() + self.cache_ttl_seconds
        with self._cache_lock:
            self._cache[actor_uri] = (expires_at, actor)
            self._cache.move_to_end(actor_uri)
            while len(self._cache) > self.cache_max_entries:
                self._cache.popitem(last=False)

    def invalidate(self, actor_uri: str) -> None:
        """Drop a cached remote actor so the next lookup refetches it."""
        with self._cache_lock:
            self._cache.pop(actor_uri, None)

    # --- lookups -------------------------------------------------------------------

    def find_local(self, db: Session, actor_uri: str) -> Actor | None:
        """Return the local actor with ``actor_uri``, ignoring remote stubs."""
        actor = db.scalar(select(Actor).where(Actor.actor_uri == actor_uri))
        if actor is None or not actor.is_local:
            return None
        return actor

    def resolve_local(self, db: Session, identifier: str) -> Actor:
        """Return a local actor by username or actor URI.

        Raises:
            ActorNotFound: If no local actor matches.
        """
        actor = db.scalar(
            select(Actor).where(
                or_(Actor.username == identifier, Actor.actor_uri == identifier),
                Actor.private_key.is_not(None),
            )
        )
        if actor is None:
            raise ActorNotFound()
        return actor

    async def resolve_remote(self, actor_uri: str, *, refresh: bool = False) -> ResolvedActor:
        """Fetch a remote actor document, using the cache unless ``refresh``.

        Raises:
            ActorUnreachable: If the document cannot be fetched or parsed.
        """
        if refresh:
            self.invalidate(actor_uri)
        else:
            cached = self.cached(actor_uri)
            if cached is not None:
                return cached

        client = await self._ensure_client()
        try:
            response = await client.get(actor_uri, headers={"Accept": ACTIVITY_JSON_ACCEPT})
        except httpx.HTTPError as exc:
            raise ActorUnreachable(f"Failed to fetch actor {actor_uri}: {exc}") from exc

        if response.status_code != HTTP_OK:
            raise ActorUnreachable(
                f"Actor {actor_uri} responded with {response.status_code}"
            )
        try:
            document = ActorDocument.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise ActorUnreachable(f"Actor {actor_uri} returned an invalid document") from exc

        actor = ResolvedActor.from_document(document)
        self._remember(actor_uri, actor)
        return actor

    async def resolve(self, db: Session, actor_uri: str, *, refresh: bool = False) -> ResolvedActor:
        """Resolve ``actor_uri`` from the local store, falling back to HTTP."""
        local = self.find_local(db, actor_uri)
        if local is not None:
            return ResolvedActor.from_model(local)
        return await self.resolve_remote(actor_uri, refresh=refresh)

    async def resolve_public_key(self, db: Session, key_id: str, *, refresh: bool = False) -> str:
        """Return the PEM public key identified by ``key_id``.

        Raises:
            KeyUnavailable: If the owner cannot be resolved or publishes no key.
        """
        owner = key_owner(key_id)
        try:
            actor = await self.resolve(db, owner, refresh=refresh)
        except ResolutionError as exc:
            logger.warning("Unable to resolve key %s: %s", key_id, exc)
            raise KeyUnavailable() from exc
        if not actor.public_key_pem:
            raise KeyUnavailable()
        return actor.public_key_pem

    def public_key_resolver(self, db: Session) -> Callable[..., Awaitable[str]]:
        """Bind ``resolve_public_key`` to a session for signature verification."""

        async def resolve_key(key_id: str, *, refresh: bool = False) -> str:
            return await self.resolve_public_key(db, key_id, refresh=refresh)

        return resolve_key

    async def resolve_inbox(self, db: Session, actor_uri: str) -> str:
        """Return the inbox for ``actor_uri``.

        Falls back to the inbox recorded on a remote stub, then to the
        conventional ``<actor>/inbox`` when the actor cannot be fetched.
        """
        stored = db.scalar(select(Actor).where(Actor.actor_uri == actor_uri))
        if stored is not None and stored.is_local:
            return stored.inbox_uri
        try:
            return (await self.resolve_remote(actor_uri)).inbox
        except ResolutionError as exc:
            fallback = stored.inbox_uri if stored is not None else f"{actor_uri.rstrip('/')}/inbox"
            logger.warning(
                "Could not resolve inbox for %s (%s); falling back to %s",
                actor_uri,
                exc,
                fallback,
            )
            return fallback
