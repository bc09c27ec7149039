"""
Timestamp normalization for documents read from the database.

Stored documents carry timestamps in several shapes (datetime objects,
epoch seconds, ``{"seconds": ..., "nanoseconds": ...}`` maps, ISO strings).
Everything is converted here, once, into an aware UTC ``datetime`` so the
rest of the code only ever sees one instant type.
"""
from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Mapping, Optional

from dateutil import parser as date_parser


# two different fill-in dates expose any date field the text left out
_FILL_A = datetime(2000, 1, 1)
_FILL_B = datetime(2001, 2, 2)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> Optional[datetime]:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    try:
        return dt.astimezone(timezone.utc)
    except OverflowError:  # within a day of datetime.min / datetime.max
        return None


def _from_epoch(seconds: float) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_text(text: str) -> Optional[datetime]:
    try:
        return date_parser.isoparse(text)
    except (ValueError, OverflowError):
        pass
    try:
        first = date_parser.parse(text, default=_FILL_A)
        second = date_parser.parse(text, default=_FILL_B)
    except (ValueError, OverflowError):
        return None
    return first if first == second else None


def normalize_instant(value: Any) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime, or None when it can't be read."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return _as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        if value != value:  # NaN
            return None
        return _from_epoch(float(value))
    if isinstance(value, Mapping):
        seconds = value.get("seconds", value.get("_seconds"))
        if isinstance(seconds, bool) or not isinstance(seconds, (int, float)):
            return None
        nanos = value.get("nanoseconds", value.get("_nanoseconds")) or 0
        if isinstance(nanos, bool) or not isinstance(nanos, (int, float)):
            nanos = 0
        return _from_epoch(float(seconds) + float(nanos) / 1e9)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        parsed = _parse_text(text)
        return _as_utc(parsed) if parsed is not None else None
    for attr in ("to_datetime", "ToDatetime"):
        conv = getattr(value, attr, None)
        if callable(conv):
            try:
                out = conv()
            except Exception:
                return None
            return _as_utc(out) if isinstance(out, datetime) else None
    return None


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    utc = _as_utc(dt) if dt is not None else None
    return utc.isoformat() if utc is not None else None
