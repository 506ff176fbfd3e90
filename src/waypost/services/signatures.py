# src/waypost/services/signatures.py
"""HTTP Signatures (draft-cavage) for server-to-server federation.

Outgoing requests are signed over ``(request-target) host date digest`` with
the sending actor's RSA key. Incoming requests are authenticated by parsing
the ``Signature`` header, resolving the ``keyId`` to a public key, rebuilding
the signing string from the request as received and verifying it.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from urllib.parse import urlsplit

from waypost.core.exceptions import (
    AuthenticationError,
    KeyUnavailable,
    MalformedSignature,
    MissingSignature,
    SignatureInvalid,
)
from waypost.core.settings import settings
from waypost.db.time import http_date, parse_http_date, utcnow
from waypost.services.crypto import CryptoService

logger = logging.getLogger(__name__)

SIGNED_HEADERS: tuple[str, ...] = ("(request-target)", "host", "date", "digest")
SUPPORTED_ALGORITHMS = frozenset({"rsa-sha256", "hs2019"})
DEFAULT_ALGORITHM = "rsa-sha256"
REQUEST_TARGET = "(request-target)"

# Values are quoted strings; base64 padding inside them must survive parsing.
_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')

PublicKeyResolver = Callable[..., Awaitable[str]]


@dataclass(frozen=True)
class SignatureHeader:
    """A computed signature plus the header values it covers."""

    key_id: str
    signature: str
    headers: tuple[str, ...]
    date: str
    digest: str
    host: str
    algorithm: str = DEFAULT_ALGORITHM

    def header_value(self) -> str:
        """Render the ``Signature`` header value."""
        return (
            f'keyId="{self.key_id}",algorithm="{self.algorithm}",'
            f'headers="{" ".join(self.headers)}",signature="{self.signature}"'
        )

    def as_headers(self) -> dict[str, str]:
        """Return the full set of headers to attach to the outgoing request."""
        return {
            "Host": self.host,
            "Date": self.date,
            "Digest": self.digest,
            "Signature": self.header_value(),
        }


@dataclass(frozen=True)
class SignatureParams:
    """Parsed parameters of an incoming ``Signature`` header."""

    key_id: str
    signature: str
    headers: tuple[str, ...]
    algorithm: str = DEFAULT_ALGORITHM

    @property
    def key_owner(self) -> str:
        """Return the actor URI that owns ``key_id`` (fragment stripped)."""
        return key_owner(self.key_id)


@dataclass
class SignedRequest:
    """Framework-neutral view of an incoming request."""

    method: str
    path: str
    headers: Mapping[str, str]
    body: bytes = b""
    _lowered: dict[str, str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._lowered = {name.lower(): value for name, value in self.headers.items()}

    def header(self, name: str) -> str | None:
        return self._lowered.get(name.lower())


def key_owner(key_id: str) -> str:
    """Strip the fragment from a ``keyId`` to get its owning actor URI."""
    return key_id.split("#", 1)[0]


def parse_signature_header(value: str) -> SignatureParams:
    """Parse a ``Signature`` header into its parameters.

    Raises:
        MalformedSignature: If ``keyId`` or ``signature`` is missing or the
            algorithm is not supported.
    """
    params = dict(_PARAM_RE.findall(value))
    key_id = params.get("keyId")
    signature = params.get("signature")
    if not key_id or not signature:
        raise MalformedSignature()

    algorithm = params.get("algorithm", DEFAULT_ALGORITHM).lower()
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise MalformedSignature(f"Unsupported signature algorithm: {algorithm}")

    # draft-cavage: when the parameter is absent only Date is signed
    header_names = tuple(params.get("headers", "date").lower().split())
    if not header_names:
        raise MalformedSignature()
    return SignatureParams(
        key_id=key_id,
        signature=signature,
        headers=header_names,
        algorithm=algorithm,
    )


def build_signing_string(
    method: str,
    path: str,
    header_names: tuple[str, ...],
    header_lookup: Callable[[str], str | None],
) -> str:
    """Build the string-to-sign for ``header_names``.

    Raises:
        MalformedSignature: If a listed header has no value.
    """
    lines: list[str] = []
    for name in header_names:
        if name == REQUEST_TARGET:
            lines.append(f"{REQUEST_TARGET}: {method.lower()} {path}")
            continue
        value = header_lookup(name)
        if value is None:
            raise MalformedSignature(f"Signed header missing from request: {name}")
        lines.append(f"{name}: {value.strip()}")
    return "\n".join(lines)


def sign_request(
    method: str,
    url: str,
    body_digest: str,
    private_key_pem: str,
    key_id: str,
    date: datetime | None = None,
) -> SignatureHeader:
    """Sign an outgoing request to ``url``.

    Args:
        method: HTTP method, e.g. ``POST``.
        url: Absolute destination URL; host and path(+query) are taken from it.
        body_digest: ``Digest`` header value of the body being sent.
        private_key_pem: PEM private key of the sending actor.
        key_id: Public key id advertised by the sending actor.
        date: Signing time, defaults to now.
    """
    parts = urlsplit(url)
    path = parts.path or "/"
    if parts.query:
        path = f"{path}?{parts.query}"
    values = {
        "host": parts.netloc,
        "date": http_date(date),
        "digest": body_digest,
    }
    signing_string = build_signing_string(method, path, SIGNED_HEADERS, values.get)
    signature = CryptoService.sign_bytes(private_key_pem, signing_string.encode("utf-8"))
    return SignatureHeader(
        key_id=key_id,
        signature=signature,
        headers=SIGNED_HEADERS,
        date=values["date"],
        digest=body_digest,
        host=values["host"],
    )


def _check_date(request: SignedRequest, max_skew_seconds: int) -> None:
    if max_skew_seconds <= 0:
        return
    raw_date = request.header("date")
    if raw_date is None:
        return
    try:
        sent_at = parse_http_date(raw_date)
    except ValueError as err:
        raise SignatureInvalid("Invalid Date header") from err
    if abs((utcnow() - sent_at).total_seconds()) > max_skew_seconds:
        raise SignatureInvalid("Request date outside the allowed window")


def _check_digest(request: SignedRequest, params: SignatureParams) -> None:
    if request.method.upper() == "POST" and "digest" not in params.headers:
        raise SignatureInvalid("POST requests must sign the digest header")
    supplied = request.header("digest")
    if supplied is None:
        return
    if supplied.strip() != CryptoService.compute_digest(request.body):
        raise SignatureInvalid("Digest does not match request body")


async def authenticate_request(
    request: SignedRequest,
    resolve_public_key: PublicKeyResolver,
    *,
    max_clock_skew_seconds: int | None = None,
) -> SignatureParams | None:
    """Authenticate ``request`` and return the verified signature parameters.

    ``resolve_public_key(key_id, refresh=False)`` must return a PEM public key.
    When a key fails to verify it is resolved once more with ``refresh=True``
    in case the cached copy is stale. GET requests are not authenticated and
    yield None.

    Raises:
        AuthenticationError: One of its subclasses describing the failure.
    """
    if request.method.upper() == "GET":
        return None

    raw_header = request.header("signature")
    if not raw_header:
        raise MissingSignature()

    params = parse_signature_header(raw_header)
    signing_string = build_signing_string(
        request.method, request.path, params.headers, request.header
    )
    _check_digest(request, params)
    skew = (
        settings.signature_max_clock_skew_seconds
        if max_clock_skew_seconds is None
        else max_clock_skew_seconds
    )
    _check_date(request, skew)

    public_key = await _resolve_key(resolve_public_key, params.key_id, refresh=False)
    message = signing_string.encode("utf-8")
    if CryptoService.verify_bytes(public_key, message, params.signature):
        return params

    refreshed = await _resolve_key(resolve_public_key, params.key_id, refresh=True)
    if refreshed != public_key and CryptoService.verify_bytes(
        refreshed, message, params.signature
    ):
        return params

    logger.info("Rejected HTTP signature from %s", params.key_id)
    raise SignatureInvalid()


async def _resolve_key(resolve_public_key: PublicKeyResolver, key_id: str, *, refresh: bool) -> str:
    try:
        public_key = await resolve_public_key(key_id, refresh=refresh)
    except AuthenticationError:
        raise
    except Exception as err:
        logger.warning("Public key lookup for %s failed: %s", key_id, err)
        raise KeyUnavailable() from err
    if not public_key:
        raise KeyUnavailable()
    return public_key


async def verify_signature(request: SignedRequest, resolve_public_key: PublicKeyResolver) -> bool:
    """Return True when ``request`` carries a valid signature (GET is exempt)."""
    try:
        await authenticate_request(request, resolve_public_key)
    except AuthenticationError as err:
        logger.debug("Signature verification failed: %s", err)
        return False
    return True
