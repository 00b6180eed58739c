"""Utility helpers shared across modules."""

from __future__ import annotations

import base64
from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(tz=UTC)


def ensure_utc(dt: datetime) -> datetime:
    """Force a datetime into UTC without altering instant."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def isoformat_utc(dt: datetime) -> str:
    """Return an ISO string with a trailing Z."""
    return ensure_utc(dt).isoformat().replace("+00:00", "Z")


def decode_base64url(data: str) -> bytes:
    """Gmail returns attachment bodies base64url-encoded, often unpadded."""
    padding = -len(data) % 4
    return base64.urlsafe_b64decode(data + "=" * padding)
