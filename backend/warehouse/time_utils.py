# Overview: UTC timestamp helpers for audit entries, error bodies and query parameters.

"""
All timestamps are stored as naive datetimes in UTC and rendered with a
trailing 'Z' at second precision.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: str | None) -> datetime | None:
    """
    Read an ISO-8601 query value into naive UTC.

    Blank input gives None. Offsets (including 'Z') are converted to UTC;
    values without an offset are taken to be UTC already. Raises ValueError
    on anything fromisoformat() rejects.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text[-1] in "zZ":
        text = f"{text[:-1]}+00:00"

    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat() + "Z"
