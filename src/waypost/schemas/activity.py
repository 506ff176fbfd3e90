# src/waypost/schemas/activity.py
"""Activity payloads as a tagged union keyed by ``type``."""

from __future__ import annotations

from typing import Any, Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from waypost.core.exceptions import ActivityValidationError

AS_CONTEXT = "https://www.w3.org/ns/activitystreams"
SECURITY_CONTEXT = "https://w3id.org/security/v1"
PUBLIC_COLLECTION = "https://www.w3.org/ns/activitystreams#Public"
PUBLIC_ALIASES = frozenset({PUBLIC_COLLECTION, "as:Public", "Public"})


def is_actor_uri(value: str) -> bool:
    """Return True when ``value`` looks like an absolute http(s) URI."""
    parts = urlsplit(value)
    return parts.scheme in {"http", "https"} and bool(parts.netloc)


def _reference_id(value: Any) -> Any:
    if isinstance(value, dict):
        return value.get("id")
    return value


class Activity(BaseModel):
    """Fields common to every activity."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    context: Any = Field(default=None, alias="@context")
    id: str | None = None
    type: str
    actor: str
    object: str | dict[str, Any] | None = None
    to: list[str] = Field(default_factory=list)
    cc: list[str] = Field(default_factory=list)
    published: str | None = None

    @field_validator("actor", mode="before")
    @classmethod
    def _flatten_actor(cls, value: Any) -> Any:
        return _reference_id(value)

    @field_validator("actor")
    @classmethod
    def _actor_is_uri(cls, value: str) -> str:
        if not is_actor_uri(value):
            raise ValueError("actor must be an absolute http(s) URI")
        return value

    @field_validator("to", "cc", mode="before")
    @classmethod
    def _as_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str | dict):
            value = [value]
        return [_reference_id(item) for item in value]

    @property
    def object_id(self) -> str | None:
        """Return the id of the object, embedded or referenced."""
        if isinstance(self.object, dict):
            object_id = self.object.get("id")
            return object_id if isinstance(object_id, str) else None
        return self.object

    @property
    def object_type(self) -> str | None:
        if isinstance(self.object, dict):
            object_type = self.object.get("type")
            return object_type if isinstance(object_type, str) else None
        return None

    @property
    def recipients(self) -> list[str]:
        """Return explicit addressees in ``to`` and ``cc`` order, without duplicates."""
        return list(dict.fromkeys(self.to + self.cc))

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class CreateActivity(Activity):
    type: Literal["Create"]
    object: str | dict[str, Any]


class LikeActivity(Activity):
    type: Literal["Like"]
    object: str | dict[str, Any]


class FollowActivity(Activity):
    type: Literal["Follow"]
    object: str | dict[str, Any]

    @field_validator("object")
    @classmethod
    def _object_is_actor(cls, value: str | dict[str, Any]) -> str | dict[str, Any]:
        target = _reference_id(value)
        if not isinstance(target, str) or not is_actor_uri(target):
            raise ValueError("Follow object must reference an actor URI")
        return value

    @property
    def target(self) -> str:
        """Return the URI of the actor being followed."""
        return str(self.object_id)


class _WrapsFollow(Activity):
    """Accept, Reject and Undo all wrap a Follow (embedded or by id)."""

    object: str | dict[str, Any]

    def embedded_follow(self) -> FollowActivity | None:
        """Return the embedded Follow, or None when the object is a bare id.

        Raises:
            ActivityValidationError: If the embedded object is not a valid Follow.
        """
        if not isinstance(self.object, dict):
            return None
        if self.object.get("type") != "Follow":
            raise ActivityValidationError(
                f"{self.type} object must be a Follow, got {self.object.get('type')!r}"
            )
        try:
            return FollowActivity.model_validate(self.object)
        except ValidationError as err:
            raise ActivityValidationError(f"Invalid embedded Follow: {_summarize(err)}") from err


class AcceptActivity(_WrapsFollow):
    type: Literal["Accept"]


class RejectActivity(_WrapsFollow):
    type: Literal["Reject"]


class UndoActivity(_WrapsFollow):
    type: Literal["Undo"]


class UnknownActivity(Activity):
    """Any activity type this server does not interpret.

    The payload is retained as parsed so it can be logged or forwarded.
    """


ParsedActivity = (
    CreateActivity
    | FollowActivity
    | AcceptActivity
    | RejectActivity
    | UndoActivity
    | LikeActivity
    | UnknownActivity
)

ACTIVITY_TYPES: dict[str, type[Activity]] = {
    "Create": CreateActivity,
    "Follow": FollowActivity,
    "Accept": AcceptActivity,
    "Reject": RejectActivity,
    "Undo": UndoActivity,
    "Like": LikeActivity,
}


def _summarize(err: ValidationError) -> str:
    first = err.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"{location}: {first.get('msg')}" if location else str(first.get("msg"))


def parse_activity(payload: Any) -> ParsedActivity:
    """Parse a JSON payload into the matching activity model.

    Raises:
        ActivityValidationError: If the payload is not an object, lacks
            ``type`` or ``actor``, or does not fit its type's shape.
    """
    if not isinstance(payload, dict):
        raise ActivityValidationError("Activity must be a JSON object")
    activity_type = payload.get("type")
    if not isinstance(activity_type, str) or not activity_type:
        raise ActivityValidationError("Activity is missing a type")
    if payload.get("actor") is None:
        raise ActivityValidationError("Activity is missing an actor")

    model = ACTIVITY_TYPES.get(activity_type, UnknownActivity)
    try:
        return model.model_validate(payload)  # type: ignore[return-value]
    except ValidationError as err:
        raise ActivityValidationError(
            f"Invalid {activity_type} activity: {_summarize(err)}"
        ) from err
