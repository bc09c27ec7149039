from __future__ import annotations
import math
import uuid
from datetime import datetime
from typing import Any, Optional

from .timestamps import normalize_instant, utc_now

def short_user_id(uid: Optional[str], length: int = 8) -> str:
    if not uid:
        return "—"
    return uid[:length]

def new_reference_number(prefix: str = "QST", now: Optional[datetime] = None) -> str:
    """``QST-20261019-3F9A1C``: prefix, UTC day, six random hex digits."""
    day = (now or utc_now()).strftime("%Y%m%d")
    return f"{prefix}-{day}-{uuid.uuid4().hex[:6].upper()}"

def format_peso(amount: Any) -> str:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        value = 0.0
    if not math.isfinite(value):
        value = 0.0
    if value == int(value):
        return f"₱{int(value):,}"
    return f"₱{value:,.2f}"

def format_when(value: Any) -> str:
    dt = normalize_instant(value)
    return dt.strftime("%Y-%m-%d %H:%M") if dt else "—"

def truncate(text: Optional[str], limit: int = 60) -> str:
    text = text or ""
    return text if len(text) <= limit else text[:limit] + "..."
