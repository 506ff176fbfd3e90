# src/waypost/services/broker.py
"""Redis-backed queue broker used to wake the inbox and outbox workers.

Messages only reference a queue row (``{"ownerActorId", "queueItemId"}``);
the database row stays the source of truth. Consumption follows the reliable
queue pattern: ``BLMOVE`` parks a message on ``<queue>:processing`` until it
is acknowledged, and ``recover`` returns parked messages after a crash.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

import redis.asyncio as aioredis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from waypost.core.exceptions import BrokerError
from waypost.core.settings import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RETRYABLE_ERRORS = (RedisConnectionError, RedisTimeoutError, OSError)


@dataclass(frozen=True)
class QueueMessage:
    """Reference to an inbox or outbox row."""

    owner_actor_id: str
    queue_item_id: int

    def encode(self) -> str:
        return json.dumps(
            {"ownerActorId": self.owner_actor_id, "queueItemId": self.queue_item_id},
            separators=(",", ":"),
        )

    @classmethod
    def decode(cls, raw: str | bytes) -> QueueMessage:
        """Parse a wire message.

        Raises:
            ValueError: If the message is not a well-formed reference.
        """
        try:
            payload = json.loads(raw)
            return cls(
                owner_actor_id=str(payload["ownerActorId"]),
                queue_item_id=int(payload["queueItemId"]),
            )
        except (TypeError, KeyError, json.JSONDecodeError) as err:
            raise ValueError(f"Malformed queue message: {raw!r}") from err


@dataclass(frozen=True)
class Delivery:
    """A consumed message awaiting ack or nack."""

    queue: str
    message: QueueMessage
    raw: str


class QueueBroker:
    """Publishes and consumes row references on Redis lists."""

    def __init__(
        self,
        url: str | None = None,
        *,
        reconnect_attempts: int | None = None,
        reconnect_backoff_seconds: float | None = None,
        client_factory: Callable[[], Any] | None = None,
    ) -> None:
        self.url = url or settings.redis_url
        self.reconnect_attempts = (
            settings.broker_reconnect_attempts if reconnect_attempts is None else reconnect_attempts
        )
        self.reconnect_backoff_seconds = (
            settings.broker_reconnect_backoff_seconds
            if reconnect_backoff_seconds is None
            else reconnect_backoff_seconds
        )
        self._client_factory = client_factory or self._default_client
        self._client: Any | None = None
        self._client_lock = asyncio.Lock()

    def _default_client(self) -> aioredis.Redis:
        return aioredis.from_url(self.url, decode_responses=True)

    @staticmethod
    def processing_queue(queue: str) -> str:
        return f"{queue}:processing"

    async def connect(self) -> None:
        """Open the connection, retrying with backoff.

        Raises:
            BrokerError: If Redis stays unreachable.
        """
        await self._call("connect", lambda client: client.ping())
        logger.info("Connected to queue broker at %s", self.url)

    async def close(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    async def _ensure_client(self) -> Any:
        async with self._client_lock:
            if self._client is None:
                self._client = self._client_factory()
        return self._client

    async def _discard_client(self) -> None:
        async with self._client_lock:
            client, self._client = self._client, None
        if client is not None:
            try:
                await client.aclose()
            except _RETRYABLE_ERRORS as exc:
                logger.debug("Ignoring error while closing broken broker client: %s", exc)

    async def _call(self, operation: str, action: Callable[[Any], Awaitable[T]]) -> T:
        last_error: Exception | None = None
        for attempt in range(self.reconnect_attempts + 1):
            client = await self._ensure_client()
            try:
                return await action(client)
            except _RETRYABLE_ERRORS as exc:
                last_error = exc
                logger.warning(
                    "Broker %s failed (attempt %d/%d): %s",
                    operation,
                    attempt + 1,
                    self.reconnect_attempts + 1,
                    exc,
                )
                await self._discard_client()
                if attempt < self.reconnect_attempts:
                    await asyncio.sleep(self.reconnect_backoff_seconds * (2**attempt))
        raise BrokerError(f"Queue broker unavailable during {operation}: {last_error}")

    async def publish(self, queue: str, message: QueueMessage) -> None:
        """Append ``message`` to ``queue``."""
        payload = message.encode()
        await self._call("publish", lambda client: client.lpush(queue, payload))

    async def consume(self, queue: str, timeout: float) -> Delivery | None:
        """Wait up to ``timeout`` seconds for the next message on ``queue``.

        The message is parked on the processing list until ``ack``/``nack``.
        Malformed messages are dropped and None is returned.
        """
        processing = self.processing_queue(queue)
        raw = await self._call(
            "consume",
            lambda client: client.blmove(queue, processing, timeout, "RIGHT", "LEFT"),
        )
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        try:
            message = QueueMessage.decode(raw)
        except ValueError as exc:
            logger.error("Dropping message from %s: %s", queue, exc)
            await self._call("drop", lambda client: client.lrem(processing, 1, raw))
            return None
        return Delivery(queue=queue, message=message, raw=raw)

    async def ack(self, delivery: Delivery) -> None:
        processing = self.processing_queue(delivery.queue)
        await self._call("ack", lambda client: client.lrem(processing, 1, delivery.raw))

    async def nack(self, delivery: Delivery, *, requeue: bool = True) -> None:
        """Release ``delivery``; by default it goes back to the end of the queue."""
        processing = self.processing_queue(delivery.queue)

        async def release(client: Any) -> None:
            await client.lrem(processing, 1, delivery.raw)
            if requeue:
                await client.lpush(delivery.queue, delivery.raw)

        await self._call("nack", release)

    async def recover(self, queue: str) -> int:
        """Return every parked message of ``queue`` to the queue."""
        processing = self.processing_queue(queue)

        async def drain(client: Any) -> int:
            moved = 0
            # Newest first onto the consuming end, so the oldest is consumed next
            while await client.lmove(processing, queue, "LEFT", "RIGHT") is not None:
                moved += 1
            return moved

        moved = await self._call("recover", drain)
        if moved:
            logger.info("Recovered %d unacknowledged messages on %s", moved, queue)
        return moved


async def notify(broker: QueueBroker | None, queue: str, message: QueueMessage) -> bool:
    """Publish ``message`` if a broker is configured; failures are logged.

    Workers also poll the tables, so a lost notification only delays processing.
    """
    if broker is None:
        return False
    try:
        await broker.publish(queue, message)
    except BrokerError as exc:
        logger.warning("Could not notify %s for row %s: %s", queue, message.queue_item_id, exc)
        return False
    return True
