from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the DateTime columns used across models."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
