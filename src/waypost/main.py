# src/waypost/main.py
"""Main entry point for the Waypost federation server."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from waypost.api.v1 import (
    actors_router,
    follows_router,
    inbox_router,
    outbox_router,
    webfinger_router,
)
from waypost.core.exceptions import BrokerError, FederationError, PersistenceError
from waypost.core.log import configure_logging
from waypost.core.settings import settings
from waypost.services.broker import QueueBroker
from waypost.services.delivery import DeliveryClient
from waypost.services.resolver import ActorResolver
from waypost.services.workers import QueueWorker, build_workers

logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="Waypost",
    description="ActivityPub federation engine",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Federation endpoints live at the origin root; the client API is versioned
app.include_router(webfinger_router)
app.include_router(actors_router)
app.include_router(inbox_router)
app.include_router(outbox_router)
app.include_router(follows_router, prefix="/api/v1")


@app.exception_handler(FederationError)
async def federation_error_handler(request: Request, exc: FederationError) -> JSONResponse:
    """Render federation failures as ``{"error", "code"}`` with their status."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(SQLAlchemyError)
async def persistence_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("%s %s failed on the database", request.method, request.url.path, exc_info=exc)
    error = PersistenceError()
    return JSONResponse(error.to_dict(), status_code=error.status_code)


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Keep unexpected failures in the same JSON shape as federation errors."""
    logger.error("%s %s failed unexpectedly", request.method, request.url.path, exc_info=exc)
    error = FederationError()
    return JSONResponse(error.to_dict(), status_code=error.status_code)


@app.on_event("startup")
async def on_startup() -> None:
    configure_logging()
    resolver = ActorResolver()
    delivery = DeliveryClient()
    broker: QueueBroker | None = None
    if settings.broker_enabled:
        broker = QueueBroker()
        try:
            await broker.connect()
        except BrokerError as exc:
            logger.warning("Queue broker unavailable, relying on table polling: %s", exc)
            await broker.close()
            broker = None

    app.state.resolver = resolver
    app.state.delivery = delivery
    app.state.broker = broker
    app.state.workers = []
    if settings.workers_enabled:
        workers = build_workers(broker, resolver, delivery)
        for worker in workers:
            await worker.start()
        app.state.workers = workers


@app.on_event("shutdown")
async def on_shutdown() -> None:
    workers: list[QueueWorker] = getattr(app.state, "workers", [])
    for worker in workers:
        await worker.stop()
    broker: QueueBroker | None = getattr(app.state, "broker", None)
    if broker is not None:
        await broker.close()
    resolver: ActorResolver | None = getattr(app.state, "resolver", None)
    if resolver is not None:
        await resolver.close()
    delivery: DeliveryClient | None = getattr(app.state, "delivery", None)
    if delivery is not None:
        await delivery.close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    broker = getattr(app.state, "broker", None)
    return {"status": "ok", "broker": "connected" if broker is not None else "disabled"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the server."""
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "description": "ActivityPub federation engine",
        "domain": settings.domain,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("waypost.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
