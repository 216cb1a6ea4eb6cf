# Overview: UTC clock and the ISO 8601 wire format for API timestamps.

from __future__ import annotations

from datetime import datetime, timezone

from .errors import ValidationError


def utcnow() -> datetime:
    """Naive UTC; every DateTime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def require_datetime(value, field: str) -> datetime:
    """
    Parse an API timestamp such as "2025-01-31T18:00:00Z".

    Offsets are converted to UTC; a timestamp without one is taken as UTC.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(f"{field} is required")
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO 8601 datetime")

    text = value.strip()
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    try:
        return _as_naive_utc(datetime.fromisoformat(text))
    except ValueError:
        raise ValidationError(f"{field} must be an ISO 8601 datetime")


def to_utc_z(dt: datetime | None) -> str | None:
    """Render a stored timestamp as second-precision UTC with a Z suffix."""
    if dt is None:
        return None
    return _as_naive_utc(dt).strftime("%Y-%m-%dT%H:%M:%SZ")
