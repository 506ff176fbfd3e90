"""Tests for the client-to-server outbox."""

from __future__ import annotations

import json

from fastapi import status
from sqlalchemy import select

from waypost.models import FollowingRelation, OutboxItem

ACTIVITY_JSON = {"Content-Type": "application/activity+json"}


def _post(client, path: str, payload: dict, headers: dict, content_type: dict = ACTIVITY_JSON):
    return client.post(path, content=json.dumps(payload), headers={**headers, **content_type})


def test_note_is_wrapped_and_queued(client, db_session, alice, auth_headers) -> None:
    r = _post(client, "/users/alice/outbox", {"type": "Note", "content": "hello"}, auth_headers)

    assert r.status_code == status.HTTP_202_ACCEPTED
    activity_id = r.json()["activity_id"]
    assert r.headers["location"] == activity_id
    item = db_session.scalars(select(OutboxItem)).one()
    assert item.activity_id == activity_id
    assert item.activity_type == "Create"
    assert item.processed is False
    assert item.raw_activity["actor"] == alice.actor_uri
    assert item.raw_activity["object"]["content"] == "hello"
    assert item.raw_activity["object"]["attributedTo"] == alice.actor_uri


def test_ld_json_is_accepted(client, db_session, alice, auth_headers) -> None:
    r = _post(
        client,
        "/users/alice/outbox",
        {"type": "Like", "object": "https://remote.example/notes/1"},
        auth_headers,
        {"Content-Type": 'application/ld+json; profile="https://www.w3.org/ns/activitystreams"'},
    )

    assert r.status_code == status.HTTP_202_ACCEPTED
    item = db_session.scalars(select(OutboxItem)).one()
    assert item.activity_type == "Like"
    assert item.raw_activity["actor"] == alice.actor_uri


def test_wrong_content_type(client, db_session, auth_headers) -> None:
    r = _post(
        client,
        "/users/alice/outbox",
        {"type": "Note", "content": "hello"},
        auth_headers,
        {"Content-Type": "application/json"},
    )

    assert r.status_code == status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
    assert db_session.scalars(select(OutboxItem)).all() == []


def test_other_actors_outbox_is_forbidden(client, db_session, carol, auth_headers) -> None:
    r = _post(client, "/users/carol/outbox", {"type": "Note", "content": "hi"}, auth_headers)

    assert r.status_code == status.HTTP_403_FORBIDDEN


def test_invalid_token(client, alice) -> None:
    r = _post(
        client,
        "/users/alice/outbox",
        {"type": "Note", "content": "hi"},
        {"Authorization": "Bearer not-a-token"},
    )

    assert r.status_code == status.HTTP_401_UNAUTHORIZED


def test_impersonation_is_rejected(client, db_session, auth_headers) -> None:
    r = _post(
        client,
        "/users/alice/outbox",
        {"type": "Like", "actor": "https://remote.example/users/bob", "object": "x"},
        auth_headers,
    )

    assert r.status_code == status.HTTP_400_BAD_REQUEST
    assert db_session.scalars(select(OutboxItem)).all() == []


def test_missing_type_is_rejected(client, auth_headers) -> None:
    r = _post(client, "/users/alice/outbox", {"content": "hi"}, auth_headers)

    assert r.status_code == status.HTTP_400_BAD_REQUEST


def test_follow_and_undo_go_through_relationships(client, db_session, alice, auth_headers) -> None:
    bob = "https://remote.example/users/bob"

    r = _post(client, "/users/alice/outbox", {"type": "Follow", "object": bob}, auth_headers)

    assert r.status_code == status.HTTP_202_ACCEPTED
    relation = db_session.scalars(select(FollowingRelation)).one()
    assert relation.peer_actor_uri == bob
    assert relation.state == "pending"
    assert relation.follow_activity_id == r.json()["activity_id"]

    undo = {"type": "Undo", "object": {"type": "Follow", "actor": alice.actor_uri, "object": bob}}
    r = _post(client, "/users/alice/outbox", undo, auth_headers)

    assert r.status_code == status.HTTP_202_ACCEPTED
    types = [item.activity_type for item in db_session.scalars(select(OutboxItem).order_by(OutboxItem.id))]
    assert types == ["Follow", "Undo"]
    # The relation goes once the Undo has been delivered
    db_session.expire_all()
    assert db_session.scalars(select(FollowingRelation)).one().peer_actor_uri == bob
