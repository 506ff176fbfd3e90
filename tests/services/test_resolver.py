"""Tests for local and remote actor resolution."""

from __future__ import annotations

import httpx
import pytest
from sqlalchemy.orm import Session

from waypost.core.exceptions import ActorNotFound, ActorUnreachable, KeyUnavailable
from waypost.models import Actor
from waypost.services.actors import ensure_remote_stub
from waypost.services.resolver import ActorResolver


def test_resolve_local_by_username_and_uri(db_session: Session, alice: Actor, resolver: ActorResolver) -> None:
    assert resolver.resolve_local(db_session, "alice").id == alice.id
    assert resolver.resolve_local(db_session, alice.actor_uri).id == alice.id


def test_resolve_local_ignores_remote_stubs(db_session: Session, resolver: ActorResolver) -> None:
    ensure_remote_stub(db_session, "https://remote.example/users/bob")
    db_session.commit()

    with pytest.raises(ActorNotFound):
        resolver.resolve_local(db_session, "https://remote.example/users/bob")
    with pytest.raises(ActorNotFound):
        resolver.resolve_local(db_session, "nobody")


@pytest.mark.asyncio
async def test_resolve_prefers_local_store(db_session: Session, alice: Actor, remote_server, resolver) -> None:
    resolved = await resolver.resolve(db_session, alice.actor_uri)

    assert resolved.is_local is True
    assert resolved.inbox == alice.inbox_uri
    assert resolved.public_key_pem == alice.public_key
    assert remote_server.fetches == []


@pytest.mark.asyncio
async def test_remote_actor_is_fetched_and_cached(remote_server, resolver: ActorResolver) -> None:
    bob = remote_server.add_actor("bob")

    first = await resolver.resolve_remote(bob)
    second = await resolver.resolve_remote(bob)

    assert first == second
    assert first.inbox == f"{bob}/inbox"
    assert first.preferred_username == "bob"
    assert first.public_key_pem == remote_server.public_key_pem
    assert remote_server.fetches == [bob]

    await resolver.resolve_remote(bob, refresh=True)
    assert remote_server.fetches == [bob, bob]
    await resolver.close()


@pytest.mark.asyncio
async def test_cache_evicts_oldest_entries(remote_server) -> None:
    resolver = ActorResolver(cache_max_entries=2, transport=remote_server.transport())
    uris = [remote_server.add_actor(name) for name in ("a1", "a2", "a3")]

    for uri in uris:
        await resolver.resolve_remote(uri)

    assert resolver.cached(uris[0]) is None
    assert resolver.cached(uris[2]) is not None


@pytest.mark.asyncio
async def test_zero_ttl_disables_cache(remote_server) -> None:
    resolver = ActorResolver(cache_ttl_seconds=0, transport=remote_server.transport())
    bob = remote_server.add_actor("bob")

    await resolver.resolve_remote(bob)
    await resolver.resolve_remote(bob)

    assert remote_server.fetches == [bob, bob]


@pytest.mark.asyncio
async def test_unknown_remote_actor_is_unreachable(resolver: ActorResolver) -> None:
    with pytest.raises(ActorUnreachable):
        await resolver.resolve_remote("https://remote.example/users/ghost")


@pytest.mark.asyncio
async def test_network_failure_is_unreachable() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    resolver = ActorResolver(transport=httpx.MockTransport(refuse))

    with pytest.raises(ActorUnreachable):
        await resolver.resolve_remote("https://down.example/users/bob")


@pytest.mark.asyncio
async def test_invalid_document_is_unreachable() -> None:
    resolver = ActorResolver(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"id": "x"}))
    )

    with pytest.raises(ActorUnreachable):
        await resolver.resolve_remote("https://broken.example/users/bob")


@pytest.mark.asyncio
async def test_resolve_public_key_strips_fragment(db_session: Session, remote_server, resolver) -> None:
    bob = remote_server.add_actor("bob")

    key = await resolver.resolve_public_key(db_session, f"{bob}#main-key")

    assert key == remote_server.public_key_pem


@pytest.mark.asyncio
async def test_resolve_public_key_unavailable(db_session: Session, resolver: ActorResolver) -> None:
    with pytest.raises(KeyUnavailable):
        await resolver.resolve_public_key(db_session, "https://remote.example/users/ghost#main-key")


@pytest.mark.asyncio
async def test_resolve_inbox_falls_back(db_session: Session, alice: Actor, resolver: ActorResolver) -> None:
    assert await resolver.resolve_inbox(db_session, alice.actor_uri) == alice.inbox_uri

    ghost = "https://remote.example/users/ghost"
    assert await resolver.resolve_inbox(db_session, ghost) == f"{ghost}/inbox"

    ensure_remote_stub(db_session, ghost, "https://remote.example/shared-inbox")
    db_session.commit()
    assert await resolver.resolve_inbox(db_session, ghost) == "https://remote.example/shared-inbox"
