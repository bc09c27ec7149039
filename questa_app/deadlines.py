"""
Task deadline & status resolution.

A task's end instant comes either from an absolute ``deadline`` or from
``created_at + task_deadline_hours``. Given that and a reference ``now`` the
resolver says whether the task has ended, whether it is in its final hour and
how much time is left, as a display string like ``"2d 3h"``.

Admin and user views both go through :func:`resolve`, so they always agree.
A task is ended only once ``now`` is strictly past its end instant.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from .timestamps import normalize_instant, utc_now

WARNING_WINDOW_HOURS = 1.0

ENDED = "Ended"
NO_DEADLINE = "No Deadline"
NO_LIMIT = "No Limit"


@dataclass(frozen=True)
class Absolute:
    instant: datetime


@dataclass(frozen=True)
class Relative:
    base: datetime
    duration_hours: float


@dataclass(frozen=True)
class Unset:
    pass


DeadlineSpec = Union[Absolute, Relative, Unset]
UNSET = Unset()


@dataclass(frozen=True)
class ResolvedStatus:
    is_ended: bool
    is_warning: bool
    hours_remaining: Optional[float]
    display_string: str

    @classmethod
    def indeterminate(cls) -> "ResolvedStatus":
        return cls(is_ended=False, is_warning=False, hours_remaining=None, display_string=NO_DEADLINE)

    @property
    def is_indeterminate(self) -> bool:
        return self.hours_remaining is None

    @property
    def badge(self) -> str:
        if self.is_indeterminate:
            return "unknown"
        if self.is_ended:
            return "ended"
        if self.is_warning:
            return "warning"
        return "active"


def _as_hours(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        hours = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(hours):
        return None
    return hours


def deadline_spec_from_fields(
    deadline: Any = None,
    created_at: Any = None,
    fallback_hours: Any = None,
) -> DeadlineSpec:
    """Build the deadline variant from raw document fields."""
    instant = normalize_instant(deadline)
    if instant is not None:
        return Absolute(instant)
    base = normalize_instant(created_at)
    hours = _as_hours(fallback_hours)
    if base is not None and hours is not None:
        return Relative(base, hours)
    return UNSET


def end_instant(spec: DeadlineSpec) -> Optional[datetime]:
    if isinstance(spec, Absolute):
        return spec.instant
    if isinstance(spec, Relative):
        try:
            return spec.base + timedelta(hours=spec.duration_hours)
        except OverflowError:
            return None
    if isinstance(spec, Unset):
        return None
    raise TypeError(f"not a deadline spec: {spec!r}")


def format_remaining(delta: timedelta) -> str:
    """
    Render a non-negative duration with its two largest non-zero units.

    >>> format_remaining(timedelta(days=2, hours=3, minutes=10))
    '2d 3h'
    >>> format_remaining(timedelta(minutes=47, seconds=59))
    '47m'
    """
    minutes = max(0, int(delta.total_seconds() // 60))
    days, rest = divmod(minutes, 24 * 60)
    hours, mins = divmod(rest, 60)
    parts = [f"{n}{unit}" for n, unit in ((days, "d"), (hours, "h"), (mins, "m")) if n > 0]
    if not parts:
        return "0m"
    return " ".join(parts[:2])


def resolve(spec: DeadlineSpec, now: Any = None) -> ResolvedStatus:
    now_dt = utc_now() if now is None else normalize_instant(now)
    if now_dt is None:
        return ResolvedStatus.indeterminate()
    end = end_instant(spec)
    if end is None:
        return ResolvedStatus.indeterminate()

    delta = end - now_dt
    hours = delta.total_seconds() / 3600
    ended = now_dt > end
    return ResolvedStatus(
        is_ended=ended,
        is_warning=(not ended) and 0 < hours <= WARNING_WINDOW_HOURS,
        hours_remaining=hours,
        display_string=ENDED if ended else format_remaining(delta),
    )


def resolve_deadline(
    deadline: Any = None,
    created_at: Any = None,
    fallback_duration_hours: Any = None,
    now: Any = None,
) -> ResolvedStatus:
    return resolve(deadline_spec_from_fields(deadline, created_at, fallback_duration_hours), now)


def resolve_user_timer(
    spec: DeadlineSpec,
    started_at: Any = None,
    time_limit_hours: Any = None,
    now: Any = None,
) -> ResolvedStatus:
    """
    Countdown for one user working on a task.

    Once the user has started, the window closes at the earlier of
    ``started_at + time_limit_hours`` and the task's own end instant.
    Without a start time or a positive limit this is just the task deadline.
    """
    start = normalize_instant(started_at)
    limit = _as_hours(time_limit_hours)
    if start is None or not limit or limit <= 0:
        return resolve(spec, now)
    try:
        user_end = start + timedelta(hours=limit)
    except OverflowError:
        return resolve(spec, now)
    task_end = end_instant(spec)
    effective = min(user_end, task_end) if task_end is not None else user_end
    return resolve(Absolute(effective), now)


def cap_time_limit_hours(limit_hours: Any, deadline: Any, now: Any = None) -> Optional[float]:
    """Clamp a per-user time limit so it never runs past the task deadline."""
    limit = _as_hours(limit_hours)
    if limit is None or limit <= 0:
        return None
    end = normalize_instant(deadline)
    now_dt = utc_now() if now is None else normalize_instant(now)
    if end is None or now_dt is None:
        return limit
    limit_minutes = limit * 60
    remaining = max(0, math.floor((end - now_dt).total_seconds() / 60))
    capped = min(limit_minutes, max(1, remaining - 1))
    return capped / 60


def format_time_limit(hours: Any) -> str:
    limit = _as_hours(hours)
    if not limit or limit <= 0:
        return NO_LIMIT
    minutes = int(round(limit * 60))
    if minutes < 60:
        return f"{minutes}m"
    if minutes < 24 * 60:
        return f"{minutes // 60}h"
    return f"{minutes // (24 * 60)}d"
