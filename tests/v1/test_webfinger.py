"""Tests for WebFinger discovery."""

from fastapi import status


def test_webfinger_resolves_local_actor(client, alice) -> None:
    r = client.get("/.well-known/webfinger", params={"resource": "acct:alice@waypost.test"})

    assert r.status_code == status.HTTP_200_OK
    assert r.headers["content-type"].startswith("application/jrd+json")
    data = r.json()
    assert data["subject"] == "acct:alice@waypost.test"
    assert data["aliases"] == ["https://waypost.test/users/alice"]
    assert data["links"][0] == {
        "rel": "self",
        "type": "application/activity+json",
        "href": "https://waypost.test/users/alice",
    }


def test_webfinger_accepts_post(client, alice) -> None:
    r = client.post("/.well-known/webfinger?resource=acct:alice@waypost.test")

    assert r.status_code == status.HTTP_200_OK
    assert r.json()["links"][0]["href"] == "https://waypost.test/users/alice"


def test_webfinger_requires_resource(client) -> None:
    r = client.get("/.well-known/webfinger")

    assert r.status_code == status.HTTP_400_BAD_REQUEST
    assert r.json()["detail"] == "Resource parameter is required"


def test_webfinger_rejects_malformed_resource(client) -> None:
    r = client.get("/.well-known/webfinger", params={"resource": "alice@waypost.test"})

    assert r.status_code == status.HTTP_400_BAD_REQUEST
    assert r.json()["detail"] == "Invalid resource format"


def test_webfinger_unknown_user_or_domain(client, alice) -> None:
    for resource in ("acct:nobody@waypost.test", "acct:alice@elsewhere.example"):
        r = client.get("/.well-known/webfinger", params={"resource": resource})
        assert r.status_code == status.HTTP_404_NOT_FOUND
        assert r.json() == {"error": "Resource not found", "code": "actor_not_found"}
