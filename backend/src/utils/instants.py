"""
Instant normalization helpers.

Database columns hold naive UTC datetimes. Anything that arrives in another
shape (ISO strings, epoch numbers, Firestore-style timestamp objects) is
converted once, here, so the rest of the code only compares datetimes.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser


def utc_now() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert a datetime to naive UTC. Naive input is assumed to be UTC already."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def as_aware_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime, or convert an aware one to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _from_epoch(seconds: float, raw: Any) -> datetime:
    # Out-of-range epochs surface as ValueError like any other bad date
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise ValueError(f"Epoch out of range in {raw!r}: {e}")


def to_instant(raw: Any) -> Optional[datetime]:
    """
    Normalize a loosely-typed date value to an aware UTC datetime.

    Accepted shapes:
        - datetime (naive values are taken as UTC)
        - date (midnight UTC)
        - int / float epoch seconds
        - ISO 8601 or other parseable date strings
        - timestamp mappings: {"_seconds": n, "_nanoseconds": m} or {"seconds": n}

    Returns:
        Aware UTC datetime, or None when raw carries no date (None, empty string)

    Raises:
        ValueError: If raw has a recognizable shape but cannot be parsed
    """
    if raw is None or raw == "":
        return None

    if isinstance(raw, datetime):
        return as_aware_utc(raw)

    if isinstance(raw, date):
        return datetime(raw.year, raw.month, raw.day, tzinfo=timezone.utc)

    if isinstance(raw, bool):
        raise ValueError(f"Unsupported date value: {raw!r}")

    if isinstance(raw, (int, float)):
        return _from_epoch(raw, raw)

    if isinstance(raw, dict):
        seconds = raw.get("_seconds", raw.get("seconds"))
        if seconds is None:
            raise ValueError(f"Timestamp object without seconds: {raw!r}")
        nanos = raw.get("_nanoseconds", raw.get("nanoseconds")) or 0
        try:
            epoch = float(seconds) + float(nanos) / 1e9
        except (TypeError, ValueError):
            raise ValueError(f"Non-numeric timestamp object: {raw!r}")
        return _from_epoch(epoch, raw)

    if isinstance(raw, str):
        text = raw.strip()
        try:
            parsed = date_parser.isoparse(text)
        except ValueError:
            try:
                parsed = date_parser.parse(text)
            except (ValueError, OverflowError) as e:
                raise ValueError(f"Unparseable date string {raw!r}: {e}")
        return as_aware_utc(parsed)

    raise ValueError(f"Unsupported date value: {raw!r}")
