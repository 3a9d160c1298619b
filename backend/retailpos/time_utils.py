"""
Time helpers.

Everything stored is UTC-naive; everything serialized carries a trailing Z.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _to_utc_naive(dt: datetime) -> datetime:
    # Naive input is already UTC
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse "2026-02-11T09:30", "2026-02-11T09:30:00Z" or an offset form.

    Blank input gives None; anything unparseable raises ValueError.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return _to_utc_naive(datetime.fromisoformat(text))


def normalize_datetime(value) -> Optional[datetime]:
    """Accept a datetime or an ISO string (API bodies, CLI options)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _to_utc_naive(value)
    if isinstance(value, str):
        return parse_iso_datetime(value)
    raise ValueError(f"Unsupported datetime value: {value!r}")


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """Serialize to second precision, e.g. 2026-02-11T09:30:00Z."""
    if dt is None:
        return None
    return _to_utc_naive(dt).replace(microsecond=0).isoformat() + "Z"
