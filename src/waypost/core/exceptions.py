"""Error taxonomy shared by the federation services and the HTTP layer.

Every error carries a stable ``code`` and the HTTP ``status_code`` it maps to on
synchronous paths. Worker paths read ``retryable`` to decide between marking a
row processed (permanent failures) and re-queueing it (transient failures).
"""

from __future__ import annotations


class FederationError(RuntimeError):
    """Base class for federation failures."""

    code = "federation_error"
    status_code = 500
    retryable = False

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message()
        super().__init__(self.message)

    @classmethod
    def default_message(cls) -> str:
        return "Internal server error"

    def to_dict(self) -> dict[str, str]:
        """Return the JSON body used for HTTP error responses."""
        return {"error": self.message, "code": self.code}


class AuthenticationError(FederationError):
    """Missing, invalid or unverifiable HTTP signature. Never retried."""

    code = "authentication_failed"
    status_code = 401

    @classmethod
    def default_message(cls) -> str:
        return "Invalid signature"


class MissingSignature(AuthenticationError):
    code = "missing_signature"

    @classmethod
    def default_message(cls) -> str:
        return "Missing HTTP Signature"


class MalformedSignature(AuthenticationError):
    code = "malformed_signature"

    @classmethod
    def default_message(cls) -> str:
        return "Invalid signature format"


class KeyUnavailable(AuthenticationError):
    code = "key_unavailable"

    @classmethod
    def default_message(cls) -> str:
        return "Unable to retrieve public key"


class SignatureInvalid(AuthenticationError):
    code = "signature_invalid"


class ActivityValidationError(FederationError):
    """Malformed activity shape. Permanent: retrying cannot fix it."""

    code = "invalid_activity"
    status_code = 400

    @classmethod
    def default_message(cls) -> str:
        return "Invalid activity format"


class ResolutionError(FederationError):
    """An actor or key could not be resolved."""

    code = "resolution_failed"
    status_code = 502
    retryable = True

    @classmethod
    def default_message(cls) -> str:
        return "Unable to resolve actor"


class ActorNotFound(ResolutionError):
    code = "actor_not_found"
    status_code = 404
    retryable = False

    @classmethod
    def default_message(cls) -> str:
        return "User not found"


class ActorUnreachable(ResolutionError):
    code = "actor_unreachable"


class DeliveryError(FederationError):
    """A POST to a remote inbox failed; affects only that destination."""

    code = "delivery_failed"
    status_code = 502
    retryable = True

    def __init__(self, message: str | None = None, *, response_status: int | None = None) -> None:
        super().__init__(message)
        self.response_status = response_status

    @classmethod
    def default_message(cls) -> str:
        return "Delivery to remote inbox failed"


class PersistenceError(FederationError):
    """The store is unavailable; the current operation is rolled back."""

    code = "persistence_failed"
    status_code = 500
    retryable = True


class BrokerError(FederationError):
    """The queue broker could not be reached after reconnect attempts."""

    code = "broker_unavailable"
    status_code = 503
    retryable = True

    @classmethod
    def default_message(cls) -> str:
        return "Queue broker unavailable"
