"""Shared UTC timestamp helpers."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import Any


def utc_now() -> datetime:
    """Return current UTC time with second precision."""
    return datetime.now(UTC).replace(microsecond=0)


def iso_z(value: datetime) -> str:
    """Format a datetime as ISO-8601 with trailing Z in UTC."""
    normalized = value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    return normalized.isoformat().replace("+00:00", "Z")


def parse_iso_z(value: str) -> datetime | None:
    """Parse an ISO timestamp and normalize to UTC."""
    raw = value.strip()
    if not raw:
        return None
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(raw)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    try:
        return parsed.astimezone(UTC)
    except OverflowError:
        return None


def parse_quote_timestamp(value: Any, *, default: datetime) -> datetime:
    """Resolve a provider timestamp given as Unix seconds or an ISO string.

    Missing, unparseable or out-of-range values resolve to `default`.
    """
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            return default
        try:
            return datetime.fromtimestamp(float(value), tz=UTC)
        except (OverflowError, OSError, ValueError):
            return default
    if isinstance(value, datetime):
        return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)
    if isinstance(value, str):
        parsed = parse_iso_z(value)
        return parsed if parsed is not None else default
    return default
