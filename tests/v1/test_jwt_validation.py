# tests/v1/test_jwt_validation.py
"""Tests for bearer token validation on the client API."""

from datetime import timedelta

from fastapi import status
from jose import jwt

from waypost.core.security import create_access_token, decode_access_token
from waypost.core.settings import settings
from waypost.db.time import utcnow
from waypost.services.actors import ensure_remote_stub

PROTECTED = "/api/v1/follow-requests"


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


class TestJWTValidationEdgeCases:
    """Token edge cases for actor-scoped endpoints."""

    def test_valid_token(self, client, auth_headers):
        response = client.get(PROTECTED, headers=auth_headers)
        assert response.status_code == status.HTTP_200_OK
        assert response.json() == []

    def test_jwt_with_malformed_token(self, client, alice):
        response = client.get(PROTECTED, headers=_bearer("not.a.valid.jwt"))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_jwt_with_wrong_secret(self, client, alice):
        token = jwt.encode(
            {"sub": alice.id, "exp": utcnow() + timedelta(hours=1)},
            "wrong_secret_key",
            algorithm=settings.jwt_algorithm,
        )
        response = client.get(PROTECTED, headers=_bearer(token))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_jwt_with_wrong_algorithm(self, client, alice):
        token = jwt.encode(
            {"sub": alice.id, "exp": utcnow() + timedelta(hours=1)},
            settings.secret_key,
            algorithm="HS512",
        )
        response = client.get(PROTECTED, headers=_bearer(token))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_jwt_with_expired_token(self, client, alice):
        token = jwt.encode(
            {"sub": alice.id, "exp": utcnow() - timedelta(minutes=5)},
            settings.secret_key,
            algorithm=settings.jwt_algorithm,
        )
        response = client.get(PROTECTED, headers=_bearer(token))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_token_for_unknown_actor(self, client):
        response = client.get(PROTECTED, headers=_bearer(create_access_token("0" * 32)))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    def test_token_for_remote_actor(self, client, db_session):
        stub = ensure_remote_stub(db_session, "https://remote.example/users/bob")
        db_session.commit()
        response = client.get(PROTECTED, headers=_bearer(create_access_token(stub.id)))
        assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_decode_round_trip() -> None:
    token = create_access_token("abc123", extra_claims={"scope": "client"})
    assert decode_access_token(token) == "abc123"
    assert jwt.get_unverified_claims(token)["scope"] == "client"
    assert decode_access_token("garbage") is None
