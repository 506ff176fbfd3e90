"""Tests for classifying and processing inbox rows."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from waypost.core.exceptions import ActivityValidationError
from waypost.models import Actor, FollowerRelation, InboxItem, OutboxItem
from waypost.services.activity_store import ActivityStore
from waypost.services.inbox import InboxProcessor
from waypost.services.workers import InboxWorker

BOB = "https://remote.example/users/bob"


def _inbox_row(db: Session, owner: Actor, payload: dict[str, Any]) -> int:
    item = ActivityStore.add(db, InboxItem, owner, payload)
    db.commit()
    return item.id


def _follow(alice: Actor) -> dict[str, Any]:
    return {"id": f"{BOB}/follows/1", "type": "Follow", "actor": BOB, "object": alice.actor_uri}


def test_follow_is_dispatched_to_relationships(db_session: Session, alice: Actor, relationships) -> None:
    processor = InboxProcessor(relationships)
    item_id = _inbox_row(db_session, alice, _follow(alice))

    staged = processor.process(db_session, db_session.get(InboxItem, item_id))

    assert [item.activity_type for item in staged] == ["Accept"]
    assert relationships.followers(db_session, alice) == [BOB]


@pytest.mark.parametrize(
    "payload",
    [
        {"type": "Create", "actor": BOB, "object": {"type": "Note", "content": "hi"}},
        {"type": "Like", "actor": BOB, "object": "https://waypost.test/notes/1"},
        {"type": "Announce", "actor": BOB, "object": "https://waypost.test/notes/1"},
        {"type": "Undo", "actor": BOB, "object": {"type": "Like", "actor": BOB, "object": "x"}},
    ],
)
def test_other_activities_have_no_side_effects(
    db_session: Session, alice: Actor, relationships, payload: dict[str, Any]
) -> None:
    processor = InboxProcessor(relationships)
    item_id = _inbox_row(db_session, alice, payload)

    assert processor.process(db_session, db_session.get(InboxItem, item_id)) == []
    assert db_session.scalars(select(OutboxItem)).all() == []


def test_malformed_follow_is_invalid(db_session: Session, alice: Actor, relationships) -> None:
    processor = InboxProcessor(relationships)
    item_id = _inbox_row(db_session, alice, {"type": "Follow", "actor": BOB, "object": "not a uri"})

    with pytest.raises(ActivityValidationError):
        processor.process(db_session, db_session.get(InboxItem, item_id))


@pytest.mark.asyncio
async def test_worker_completes_and_announces_accept(
    db_session: Session,
    session_factory: Callable[[], Session],
    alice: Actor,
    relationships,
    mock_broker,
) -> None:
    item_id = _inbox_row(db_session, alice, _follow(alice))
    worker = InboxWorker(
        mock_broker,
        InboxProcessor(relationships),
        session_factory=session_factory,
        queue_name="test:inbox",
        batch_size=5,
    )

    assert await worker.run_once() == 1

    db_session.expire_all()
    item = db_session.get(InboxItem, item_id)
    assert item.processed is True
    assert item.completed_at is not None
    assert item.last_error is None
    accept = db_session.scalars(select(OutboxItem)).one()
    assert accept.activity_type == "Accept"
    published = mock_broker.publish.await_args
    assert published.args[0] == "test:outbox"
    assert published.args[1].queue_item_id == accept.id


@pytest.mark.asyncio
async def test_worker_marks_invalid_rows_processed(
    db_session: Session,
    session_factory: Callable[[], Session],
    alice: Actor,
    relationships,
) -> None:
    item_id = _inbox_row(
        db_session,
        alice,
        {"type": "Undo", "actor": "https://remote.example/users/mallory", "object": _follow(alice)},
    )
    db_session.add(
        FollowerRelation(subject_actor_id=alice.id, peer_actor_uri=BOB, state="accepted")
    )
    db_session.commit()
    worker = InboxWorker(
        None,
        InboxProcessor(relationships),
        session_factory=session_factory,
        queue_name="test:inbox",
        batch_size=5,
    )

    await worker.run_once()

    db_session.expire_all()
    item = db_session.get(InboxItem, item_id)
    assert item.processed is True
    assert item.completed_at is not None
    assert "Undo actor" in item.last_error
    assert relationships.followers(db_session, alice) == [BOB]
    assert await worker.run_once() == 0
