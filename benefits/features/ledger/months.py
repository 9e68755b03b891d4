from datetime import datetime, timezone
from typing import Optional


def normalize_now(now: Optional[datetime] = None) -> datetime:
    if now is None:
        return datetime.now(timezone.utc)
    if getattr(now, "tzinfo", None) is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def month_key(now: Optional[datetime] = None) -> str:
    """Calendar month key ("YYYY-MM", UTC) used to bucket claim counters."""
    current = normalize_now(now)
    return f"{current.year:04d}-{current.month:02d}"
