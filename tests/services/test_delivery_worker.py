"""Tests for fanning outbox rows out to remote and local inboxes."""

from __future__ import annotations

import json
import logging
from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from waypost.core.exceptions import ActorNotFound
from waypost.models import Actor, FollowerRelation, FollowingRelation, InboxItem, OutboxItem
from waypost.schemas.activity import parse_activity
from waypost.services.activities import build_create
from waypost.services.activity_store import ActivityStore
from waypost.services.actors import ensure_remote_stub
from waypost.services.delivery import DeliveryClient
from waypost.services.resolver import ActorResolver
from waypost.services.signatures import SignedRequest, verify_signature
from waypost.services.workers import OutboxDeliveryWorker


@pytest.fixture
def delivery(remote_server) -> DeliveryClient:
    return DeliveryClient(transport=remote_server.transport())


@pytest.fixture
def make_worker(
    resolver: ActorResolver,
    delivery: DeliveryClient,
    relationships,
    session_factory: Callable[[], Session],
) -> Callable[..., OutboxDeliveryWorker]:
    def _make(**options: Any) -> OutboxDeliveryWorker:
        options.setdefault("max_attempts", 0)
        return OutboxDeliveryWorker(
            None,
            resolver,
            delivery,
            relationships,
            session_factory=session_factory,
            queue_name="test:outbox",
            batch_size=5,
            **options,
        )

    return _make


def _add_follower(db: Session, subject: Actor, peer_uri: str) -> None:
    db.add(FollowerRelation(subject_actor_id=subject.id, peer_actor_uri=peer_uri, state="accepted"))
    db.commit()


def _publish_note(db: Session, actor: Actor, **addressing: Any) -> int:
    payload = build_create(actor, {"type": "Note", "content": "hello fediverse"}, **addressing)
    item = ActivityStore.add(db, OutboxItem, actor, payload)
    db.commit()
    return item.id


def _reload(db: Session, model: type, item_id: int) -> Any:
    db.expire_all()
    return db.get(model, item_id)


@pytest.mark.asyncio
async def test_one_failing_follower_does_not_block_the_others(
    db_session: Session, alice: Actor, remote_server, make_worker, caplog
) -> None:
    followers = [remote_server.add_actor(name) for name in ("p1", "p2", "p3")]
    for uri in followers:
        _add_follower(db_session, alice, uri)
    remote_server.inbox_status[f"{followers[1]}/inbox"] = 500
    item_id = _publish_note(db_session, alice)

    with caplog.at_level(logging.WARNING, logger="waypost.services.workers"):
        assert await make_worker().run_once() == 1

    assert sorted(remote_server.delivered_to()) == sorted(f"{uri}/inbox" for uri in followers)
    item = _reload(db_session, OutboxItem, item_id)
    assert item.processed is True
    assert item.completed_at is not None
    assert item.attempts == 1
    failures = [record for record in caplog.records if "failed" in record.getMessage()]
    assert len(failures) == 1
    assert f"{followers[1]}/inbox" in failures[0].getMessage()

    # The completed row is not retried
    assert await make_worker().run_once() == 0
    assert len(remote_server.deliveries) == 3


@pytest.mark.asyncio
async def test_deliveries_are_signed_by_the_owner(
    db_session: Session, alice: Actor, remote_server, make_worker
) -> None:
    follower = remote_server.add_actor("p1")
    _add_follower(db_session, alice, follower)
    _publish_note(db_session, alice)

    await make_worker().run_once()

    (request,) = remote_server.deliveries
    assert request.headers["content-type"] == "application/activity+json"
    body = json.loads(request.content)
    assert body["type"] == "Create"
    assert body["object"]["content"] == "hello fediverse"

    signed = SignedRequest(
        method=request.method,
        path=request.url.raw_path.decode(),
        headers=dict(request.headers),
        body=request.content,
    )

    async def alice_key(key_id: str, *, refresh: bool = False) -> str:
        assert key_id == alice.key_id
        return alice.public_key

    assert await verify_signature(signed, alice_key) is True


@pytest.mark.asyncio
async def test_explicit_addressees_are_deduplicated_by_inbox(
    db_session: Session, alice: Actor, remote_server, make_worker
) -> None:
    follower = remote_server.add_actor("p1")
    _add_follower(db_session, alice, follower)
    shared = [remote_server.add_actor(name) for name in ("s1", "s2")]
    for uri in shared:
        remote_server.actors[uri]["inbox"] = "https://remote.example/inbox"
    _publish_note(
        db_session,
        alice,
        to=["https://www.w3.org/ns/activitystreams#Public", *shared],
        cc=[alice.followers_uri, follower],
    )

    await make_worker().run_once()

    assert sorted(remote_server.delivered_to()) == sorted(
        [f"{follower}/inbox", "https://remote.example/inbox"]
    )


@pytest.mark.asyncio
async def test_local_followers_get_an_inbox_row(
    db_session: Session, alice: Actor, carol: Actor, remote_server, make_worker
) -> None:
    _add_follower(db_session, alice, carol.actor_uri)
    _publish_note(db_session, alice)

    await make_worker().run_once()

    assert remote_server.deliveries == []
    db_session.expire_all()
    (inbox_item,) = db_session.scalars(select(InboxItem)).all()
    assert inbox_item.owner_actor_id == carol.id
    assert inbox_item.activity_type == "Create"
    assert inbox_item.processed is False


@pytest.mark.asyncio
async def test_follow_is_sent_to_its_target(
    db_session: Session, alice: Actor, remote_server, relationships, make_worker
) -> None:
    bob = remote_server.add_actor("bob")
    item = await relationships.follow(db_session, alice, bob)

    await make_worker().run_once()

    assert remote_server.delivered_to() == [f"{bob}/inbox"]
    assert json.loads(remote_server.deliveries[0].content)["id"] == item.activity_id


@pytest.mark.asyncio
async def test_undo_drops_following_only_after_delivery(
    db_session: Session, alice: Actor, remote_server, relationships, make_worker
) -> None:
    bob = remote_server.add_actor("bob")
    db_session.add(
        FollowingRelation(
            actor_id=alice.id,
            peer_actor_uri=bob,
            state="accepted",
            follow_activity_id=f"{alice.actor_uri}/activities/f1",
        )
    )
    db_session.commit()

    remote_server.inbox_status[f"{bob}/inbox"] = 503
    failed = await relationships.unfollow(db_session, alice, bob)
    await make_worker().run_once()

    assert _reload(db_session, OutboxItem, failed.id).completed_at is not None
    assert relationships.following(db_session, alice) == [bob]

    remote_server.inbox_status[f"{bob}/inbox"] = 202
    await relationships.unfollow(db_session, alice, bob)
    await make_worker().run_once()

    db_session.expire_all()
    assert relationships.following(db_session, alice) == []
    assert parse_activity(json.loads(remote_server.deliveries[-1].content)).type == "Undo"


@pytest.mark.asyncio
async def test_whole_row_failure_is_requeued_then_dead_lettered(
    db_session: Session, remote_server, make_worker
) -> None:
    stub = ensure_remote_stub(db_session, "https://remote.example/users/ghost")
    item = ActivityStore.add(
        db_session,
        OutboxItem,
        stub,
        {"type": "Like", "actor": stub.actor_uri, "object": "https://waypost.test/notes/1"},
    )
    db_session.commit()
    item_id = item.id

    assert await make_worker().run_once() == 1
    item = _reload(db_session, OutboxItem, item_id)
    assert item.processed is False
    assert item.attempts == 1
    assert "not a local actor" in item.last_error

    await make_worker(max_attempts=2).run_once()
    item = _reload(db_session, OutboxItem, item_id)
    assert item.processed is True
    assert item.attempts == 2
    assert item.last_error.startswith("dead-lettered:")
    assert await make_worker(max_attempts=2).run_once() == 0
    assert remote_server.deliveries == []


@pytest.mark.asyncio
async def test_directed_activity_without_target_is_dropped(
    db_session: Session, alice: Actor, make_worker
) -> None:
    item = ActivityStore.add(
        db_session,
        OutboxItem,
        alice,
        {"type": "Undo", "actor": alice.actor_uri, "object": "https://waypost.test/activities/x"},
    )
    db_session.commit()
    item_id = item.id

    await make_worker().run_once()

    item = _reload(db_session, OutboxItem, item_id)
    assert item.processed is True
    assert item.completed_at is not None
    assert "has no target" in item.last_error


@pytest.mark.asyncio
async def test_non_retryable_resolution_failure_is_dropped(
    db_session: Session, alice: Actor, resolver: ActorResolver, make_worker, mocker
) -> None:
    _add_follower(db_session, alice, "https://remote.example/users/gone")
    item_id = _publish_note(db_session, alice)
    mocker.patch.object(resolver, "resolve_inbox", side_effect=ActorNotFound("Actor has been deleted"))

    await make_worker(max_attempts=5).run_once()

    item = _reload(db_session, OutboxItem, item_id)
    assert item.processed is True
    assert item.completed_at is not None
    assert item.attempts == 1
    assert item.last_error == "Actor has been deleted"
