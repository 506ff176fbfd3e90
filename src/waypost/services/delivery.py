# src/waypost/services/delivery.py
"""Signed HTTP delivery of activities to remote inboxes."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import httpx

from waypost.core.exceptions import DeliveryError
from waypost.core.settings import settings
from waypost.models import Actor
from waypost.services.crypto import CryptoService
from waypost.services.signatures import sign_request

logger = logging.getLogger(__name__)

ACTIVITY_JSON = "application/activity+json"
ACCEPT_HEADER = "application/activity+json, application/ld+json"


def serialize_activity(payload: dict[str, Any]) -> bytes:
    """Encode an activity exactly as it is sent and digested."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


class DeliveryClient:
    """POSTs signed activities; each call concerns a single destination."""

    def __init__(
        self,
        *,
        timeout_seconds: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds or settings.http_timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _ensure_client(self) -> httpx.AsyncClient:
        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    timeout=httpx.Timeout(self.timeout_seconds),
                    transport=self._transport,
                )
        return self._client

    async def close(self) -> None:
        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None

    async def deliver(self, inbox_uri: str, payload: dict[str, Any], sender: Actor) -> int:
        """Sign ``payload`` as ``sender`` and POST it to ``inbox_uri``.

        Returns:
            The HTTP status of the accepted delivery.

        Raises:
            DeliveryError: On network failure or a non-2xx response.
        """
        if not sender.private_key:
            raise DeliveryError(f"Actor {sender.actor_uri} has no signing key")

        body = serialize_activity(payload)
        signature = sign_request(
            "POST",
            inbox_uri,
            CryptoService.compute_digest(body),
            sender.private_key,
            sender.key_id,
        )
        headers = {
            **signature.as_headers(),
            "Content-Type": ACTIVITY_JSON,
            "Accept": ACCEPT_HEADER,
            "User-Agent": settings.http_user_agent,
        }

        client = await self._ensure_client()
        try:
            response = await client.post(inbox_uri, content=body, headers=headers)
        except httpx.HTTPError as exc:
            raise DeliveryError(f"POST {inbox_uri} failed: {exc}") from exc

        if not response.is_success:
            raise DeliveryError(
                f"POST {inbox_uri} returned {response.status_code}",
                response_status=response.status_code,
            )
        logger.debug("Delivered %s to %s (%d)", payload.get("id"), inbox_uri, response.status_code)
        return response.status_code
