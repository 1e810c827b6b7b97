# Overview: UTC helpers; the database stores naive UTC, the API speaks ISO-8601 with Z.

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _as_utc(dt: datetime) -> datetime:
    # Naive values are already UTC by convention
    return dt.replace(tzinfo=timezone.utc) if dt.tzinfo is None else dt.astimezone(timezone.utc)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    Parse a client timestamp into naive UTC.

    Accepts a trailing "Z" or a numeric offset; a value without one is read
    as UTC. Blank input gives None; malformed input raises ValueError.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    return _as_utc(datetime.fromisoformat(text)).replace(tzinfo=None)


def to_utc_z(dt: datetime | None) -> str | None:
    """Serialize to second precision with a trailing Z."""
    if dt is None:
        return None
    return _as_utc(dt).replace(microsecond=0, tzinfo=None).isoformat() + "Z"
