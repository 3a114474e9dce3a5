"""Time utilities shared across tiiscan components."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def utc_now_str() -> str:
    """Return the current UTC timestamp as an ISO-8601 string."""
    return utc_now().isoformat()


def format_timestamp(ts: datetime, *, utc: bool = True) -> str:
    """Render a timestamp for CSV output, in UTC or converted to local time."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    if not utc:
        ts = ts.astimezone()
    return ts.isoformat(timespec="seconds")


def parse_timestamp(text: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if not text:
        return None
    value = datetime.fromisoformat(str(text).strip().replace("Z", "+00:00"))
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
