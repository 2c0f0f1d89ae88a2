"""UTC timestamps shared by the stores, the track tables and the remote store.

Every timestamp is held as an aware UTC datetime so that local edits and
remote changes from other devices compare on one timeline. Values written
without an offset are read as UTC.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | datetime | None) -> datetime | None:
    """Parse an ISO 8601 value into an aware UTC datetime.

    Accepts a trailing ``Z``. Naive values are taken to be UTC and offset
    values are converted to UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, str):
        if value.endswith(("Z", "z")):
            value = value[:-1] + "+00:00"
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
