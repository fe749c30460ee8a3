"""Time helpers for UTC timestamps and the unix-seconds flush marker format."""

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return current UTC datetime with timezone attached."""

    return datetime.now(timezone.utc)


def to_unix_seconds(moment: datetime) -> int:
    """Return whole unix seconds for an aware datetime."""

    return int(moment.timestamp())


def from_unix_seconds(seconds: int) -> datetime:
    """Return the aware UTC datetime for unix seconds."""

    return datetime.fromtimestamp(seconds, tz=timezone.utc)
