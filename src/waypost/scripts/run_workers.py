# src/waypost/scripts/run_workers.py
"""Run the inbox and outbox workers outside the web process."""
from __future__ import annotations

import asyncio
import logging

from waypost.core.exceptions import BrokerError
from waypost.core.log import configure_logging
from waypost.core.settings import settings
from waypost.services.broker import QueueBroker
from waypost.services.delivery import DeliveryClient
from waypost.services.resolver import ActorResolver
from waypost.services.workers import build_workers, run_forever

logger = logging.getLogger(__name__)


async def _main() -> None:
    resolver = ActorResolver()
    delivery = DeliveryClient()
    broker: QueueBroker | None = None
    if settings.broker_enabled:
        broker = QueueBroker()
        try:
            await broker.connect()
        except BrokerError as exc:
            logger.warning("Queue broker unavailable, polling tables only: %s", exc)
            await broker.close()
            broker = None
    try:
        await run_forever(build_workers(broker, resolver, delivery))
    finally:
        if broker is not None:
            await broker.close()
        await resolver.close()
        await delivery.close()


def main() -> None:
    configure_logging()
    asyncio.run(_main())


if __name__ == "__main__":
    main()
