"""Time helpers shared by models, the activity store and signature checks."""

from datetime import UTC, datetime, timedelta
from email.utils import format_datetime, parsedate_to_datetime


def utcnow() -> datetime:
    """Return the current UTC time as a timezone-aware datetime."""
    return datetime.now(UTC)


def seconds_ago(seconds: float) -> datetime:
    """Return the aware UTC instant ``seconds`` before now."""
    return utcnow() - timedelta(seconds=seconds)


def http_date(moment: datetime | None = None) -> str:
    """Format an instant as an RFC 7231 ``Date`` header value."""
    return format_datetime(moment or utcnow(), usegmt=True)


def parse_http_date(value: str) -> datetime:
    """Parse an RFC 7231 ``Date`` header value into an aware datetime.

    Raises:
        ValueError: If the value is not a valid HTTP date.
    """
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, IndexError) as err:
        raise ValueError(f"Invalid HTTP date: {value!r}") from err
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
