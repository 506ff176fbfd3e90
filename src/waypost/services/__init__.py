# src/waypost/services/__init__.py
"""Federation services for the Waypost engine."""

from .activity_store import ActivityStore
from .broker import QueueBroker, QueueMessage
from .crypto import CryptoService
from .delivery import DeliveryClient
from .inbox import InboxIngestor, InboxProcessor
from .outbox import OutboxService
from .relationships import RelationshipStateMachine
from .resolver import ActorResolver, ResolvedActor

__all__ = [
    "ActivityStore",
    "ActorResolver", "ResolvedActor",
    "CryptoService",
    "DeliveryClient",
    "InboxIngestor", "InboxProcessor",
    "OutboxService",
    "QueueBroker", "QueueMessage",
    "RelationshipStateMachine",
]
