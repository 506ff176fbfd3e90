# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("PYTEST_RUNNING", "true")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-waypost")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DOMAIN", "waypost.test")
os.environ.setdefault("BROKER_ENABLED", "false")
os.environ.setdefault("WORKERS_ENABLED", "false")

from waypost.api.v1.dependencies import get_resolver  # noqa: E402
from waypost.core.security import create_access_token  # noqa: E402
from waypost.db.session import Base  # noqa: E402
from waypost.db.session import get_db as app_get_session  # noqa: E402
from waypost.main import app as fastapi_app  # noqa: E402
from waypost.models import Actor  # noqa: E402
from waypost.services.actors import create_local_actor  # noqa: E402
from waypost.services.broker import QueueBroker  # noqa: E402
from waypost.services.crypto import CryptoService  # noqa: E402
from waypost.services.outbox import OutboxService  # noqa: E402
from waypost.services.relationships import RelationshipStateMachine  # noqa: E402
from waypost.services.resolver import ActorResolver  # noqa: E402

TEST_DB_URL = "sqlite://"
REMOTE_ORIGIN = "https://remote.example"


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Callable[[], Session]:
    """Session factory handed to workers; shares the in-memory database."""
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db_session(session_factory: Callable[[], Session]) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def remote_keys() -> tuple[str, str]:
    """One RSA key pair shared by every simulated remote actor."""
    return CryptoService.generate_key_pair()


def remote_actor_uri(name: str) -> str:
    return f"{REMOTE_ORIGIN}/users/{name}"


def remote_actor_document(name: str, public_key_pem: str) -> dict[str, Any]:
    actor_uri = remote_actor_uri(name)
    return {
        "@context": ["https://www.w3.org/ns/activitystreams", "https://w3id.org/security/v1"],
        "id": actor_uri,
        "type": "Person",
        "preferredUsername": name,
        "inbox": f"{actor_uri}/inbox",
        "outbox": f"{actor_uri}/outbox",
        "followers": f"{actor_uri}/followers",
        "publicKey": {
            "id": f"{actor_uri}#main-key",
            "owner": actor_uri,
            "publicKeyPem": public_key_pem,
        },
    }


class RemoteServer:
    """Simulated remote instance for ``httpx.MockTransport``.

    Serves actor documents for registered names, records inbox POSTs and
    answers them with the status configured per inbox (202 by default).
    """

    def __init__(self, public_key_pem: str) -> None:
        self.public_key_pem = public_key_pem
        self.actors: dict[str, dict[str, Any]] = {}
        self.inbox_status: dict[str, int] = {}
        self.deliveries: list[httpx.Request] = []
        self.fetches: list[str] = []

    def add_actor(self, name: str, *, public_key_pem: str | None = None) -> str:
        document = remote_actor_document(name, public_key_pem or self.public_key_pem)
        self.actors[document["id"]] = document
        return document["id"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if request.method == "GET":
            self.fetches.append(url)
            document = self.actors.get(url)
            if document is None:
                return httpx.Response(404, json={"error": "not found"})
            return httpx.Response(200, json=document)
        self.deliveries.append(request)
        return httpx.Response(self.inbox_status.get(url, 202))

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def delivered_to(self) -> list[str]:
        return [str(request.url) for request in self.deliveries]


@pytest.fixture()
def remote_server(remote_keys: tuple[str, str]) -> RemoteServer:
    return RemoteServer(remote_keys[1])


@pytest.fixture()
def resolver(remote_server: RemoteServer) -> ActorResolver:
    return ActorResolver(transport=remote_server.transport())


@pytest.fixture()
def mock_broker() -> AsyncMock:
    broker = AsyncMock(spec=QueueBroker)
    broker.consume.return_value = None
    broker.recover.return_value = 0
    return broker


@pytest.fixture()
def outbox_service(mock_broker: AsyncMock) -> OutboxService:
    return OutboxService(mock_broker, queue_name="test:outbox")


@pytest.fixture()
def relationships(outbox_service: OutboxService) -> RelationshipStateMachine:
    return RelationshipStateMachine(outbox_service, auto_accept=True)


@pytest.fixture()
def alice(db_session: Session) -> Actor:
    """Create and return the primary local actor."""
    return create_local_actor(db_session, "alice", display_name="Alice")


@pytest.fixture()
def carol(db_session: Session) -> Actor:
    """Create and return a second local actor."""
    return create_local_actor(db_session, "carol", display_name="Carol")


def auth_headers_for(actor: Actor) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(actor.id)}"}


@pytest.fixture()
def auth_headers(alice: Actor) -> dict[str, str]:
    return auth_headers_for(alice)


@pytest.fixture()
def headers_for() -> Callable[[Actor], dict[str, str]]:
    """Return a helper building bearer headers for any local actor."""
    return auth_headers_for


@pytest.fixture()
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture()
def client(
    app: FastAPI, db_session: Session, resolver: ActorResolver
) -> Iterator[TestClient]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    app.dependency_overrides[get_resolver] = lambda: resolver
    try:
        with TestClient(app, base_url="http://test") as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(app_get_session, None)
        app.dependency_overrides.pop(get_resolver, None)
