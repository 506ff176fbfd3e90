"""Shared API dependencies for authentication and federation services."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from waypost.core.security import decode_access_token
from waypost.db.session import get_db
from waypost.models import Actor
from waypost.services.broker import QueueBroker
from waypost.services.inbox import InboxIngestor
from waypost.services.outbox import OutboxService
from waypost.services.relationships import RelationshipStateMachine
from waypost.services.resolver import ActorResolver

# HTTP Bearer scheme for JWT authentication
bearer_scheme = HTTPBearer()

# Type alias for database session dependency
SessionDep = Annotated[Session, Depends(get_db)]


def get_current_actor(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    db: SessionDep,
) -> Actor:
    """Return the local actor named by the bearer token.

    Raises:
        HTTPException: If the token is invalid or the actor is not local.
    """
    actor_id = decode_access_token(credentials.credentials)
    if actor_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    actor = db.get(Actor, actor_id)
    if actor is None or not actor.is_local:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Actor not found",
        )
    return actor


CurrentActorDep = Annotated[Actor, Depends(get_current_actor)]


def get_broker(request: Request) -> QueueBroker | None:
    """Return the broker opened at startup, or None when it is disabled."""
    return getattr(request.app.state, "broker", None)


def get_resolver(request: Request) -> ActorResolver:
    resolver: ActorResolver | None = getattr(request.app.state, "resolver", None)
    if resolver is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Federation services are not running",
        )
    return resolver


BrokerDep = Annotated[QueueBroker | None, Depends(get_broker)]
ResolverDep = Annotated[ActorResolver, Depends(get_resolver)]


def get_outbox_service(broker: BrokerDep) -> OutboxService:
    return OutboxService(broker)


OutboxDep = Annotated[OutboxService, Depends(get_outbox_service)]


def get_relationships(outbox: OutboxDep) -> RelationshipStateMachine:
    return RelationshipStateMachine(outbox)


RelationshipsDep = Annotated[RelationshipStateMachine, Depends(get_relationships)]


def get_ingestor(resolver: ResolverDep, broker: BrokerDep) -> InboxIngestor:
    return InboxIngestor(resolver, broker)


IngestorDep = Annotated[InboxIngestor, Depends(get_ingestor)]
