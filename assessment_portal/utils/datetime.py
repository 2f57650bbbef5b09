from __future__ import annotations
from datetime import datetime, UTC
from typing import Optional

__all__ = ["utc_now", "utc_now_naive", "ensure_aware_utc", "to_naive_utc", "epoch_ms"]

def utc_now() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(UTC)

def utc_now_naive() -> datetime:
    """Naive UTC now, the form every DateTime column stores."""
    return utc_now().replace(tzinfo=None)

def ensure_aware_utc(dt: datetime | None) -> Optional[datetime]:
    """Ensure a datetime is timezone-aware in UTC (assumes naive input already in UTC)."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)

def to_naive_utc(dt: datetime | None) -> Optional[datetime]:
    """Convert aware datetime to naive UTC for storage/compare; pass through naive assumed UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(UTC).replace(tzinfo=None)

def epoch_ms(dt: datetime) -> int:
    """Milliseconds since the epoch, treating naive input as UTC."""
    return int(ensure_aware_utc(dt).timestamp() * 1000)
