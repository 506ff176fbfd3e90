"""Bearer tokens for the client-to-server API."""

from __future__ import annotations

from datetime import timedelta

from jose import JWTError, jwt

from waypost.core.settings import settings
from waypost.db.time import utcnow


def create_access_token(actor_id: str, extra_claims: dict[str, str] | None = None) -> str:
    """Create a JWT access token identifying a local actor."""
    to_encode: dict[str, object] = {"sub": actor_id}
    if extra_claims:
        to_encode.update(extra_claims)
    to_encode["exp"] = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)
    encoded_jwt: str = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str) -> str | None:
    """Return the actor id carried by ``token``, or None if it does not validate."""
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None
    subject = payload.get("sub")
    return str(subject) if subject else None
