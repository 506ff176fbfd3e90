"""WebFinger discovery endpoint."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import JSONResponse

from waypost.api.v1.dependencies import SessionDep
from waypost.services import actors as actor_service

JRD_JSON = "application/jrd+json"

router = APIRouter(tags=["federation"])


@router.api_route("/.well-known/webfinger", methods=["GET", "POST"])
async def webfinger(
    db: SessionDep,
    resource: Annotated[str | None, Query()] = None,
) -> JSONResponse:
    """Resolve ``acct:user@domain`` to the actor document URI."""
    if not resource:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Resource parameter is required",
        )
    try:
        document = actor_service.webfinger(db, resource)
    except ValueError as err:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid resource format",
        ) from err
    return JSONResponse(document.model_dump(exclude_none=True), media_type=JRD_JSON)
