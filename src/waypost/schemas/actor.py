# src/waypost/schemas/actor.py
"""Actor documents, WebFinger responses and collections."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from waypost.schemas.activity import AS_CONTEXT, SECURITY_CONTEXT


class PublicKeyDocument(BaseModel):
    """The ``publicKey`` block of an actor document."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    owner: str
    public_key_pem: str = Field(..., alias="publicKeyPem")


class ActorDocument(BaseModel):
    """JSON-LD actor document, rendered for local actors and parsed for remote ones."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    context: Any = Field(default_factory=lambda: [AS_CONTEXT, SECURITY_CONTEXT], alias="@context")
    id: str
    type: str = "Person"
    preferred_username: str | None = Field(None, alias="preferredUsername")
    name: str | None = None
    summary: str | None = None
    inbox: str
    outbox: str | None = None
    followers: str | None = None
    following: str | None = None
    public_key: PublicKeyDocument | None = Field(None, alias="publicKey")

    @field_validator("public_key", mode="before")
    @classmethod
    def _first_key(cls, value: Any) -> Any:
        # Some servers publish a list of keys; the first one is the main key
        if isinstance(value, list):
            return value[0] if value else None
        return value


class WebFingerLink(BaseModel):
    rel: str
    type: str | None = None
    href: str | None = None


class WebFingerResponse(BaseModel):
    """JRD document returned by ``/.well-known/webfinger``."""

    subject: str
    aliases: list[str] = Field(default_factory=list)
    links: list[WebFingerLink] = Field(default_factory=list)


class OrderedCollection(BaseModel):
    """A non-paginated ActivityStreams ``OrderedCollection``."""

    model_config = ConfigDict(populate_by_name=True)

    context: str = Field(default=AS_CONTEXT, alias="@context")
    id: str
    type: str = "OrderedCollection"
    total_items: int = Field(..., alias="totalItems")
    ordered_items: list[Any] = Field(default_factory=list, alias="orderedItems")
