"""Server-to-server inbox endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from waypost.api.v1.dependencies import IngestorDep, SessionDep
from waypost.services.signatures import SignedRequest

router = APIRouter(prefix="/users", tags=["federation"])


@router.post("/{username}/inbox", status_code=status.HTTP_202_ACCEPTED)
async def post_inbox(
    username: str,
    request: Request,
    db: SessionDep,
    ingestor: IngestorDep,
) -> JSONResponse:
    """Verify and enqueue an activity for a local actor.

    Classification happens later in the inbox worker. Authentication,
    validation and lookup failures are rendered by the federation error
    handler.
    """
    path = request.url.path
    if request.url.query:
        path = f"{path}?{request.url.query}"
    signed = SignedRequest(
        method=request.method,
        path=path,
        headers=dict(request.headers),
        body=await request.body(),
    )
    await ingestor.ingest(db, username, signed)
    return JSONResponse({"status": "Accepted"}, status_code=status.HTTP_202_ACCEPTED)
