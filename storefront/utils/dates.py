"""Date helpers. All timestamps are stored as naive UTC."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso(value):
    """ISO-8601 string or None."""
    return value.isoformat() if value else None
