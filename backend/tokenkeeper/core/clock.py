"""Time source shared by the token services."""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC now, matching the naive UTC columns in the token tables."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
