# tests/test_deadlines.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from questa_app.deadlines import (
    ENDED,
    NO_DEADLINE,
    UNSET,
    Absolute,
    Relative,
    ResolvedStatus,
    cap_time_limit_hours,
    deadline_spec_from_fields,
    end_instant,
    format_remaining,
    format_time_limit,
    resolve,
    resolve_deadline,
    resolve_user_timer,
)

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_two_largest_units_drop_minutes_once_days_show() -> None:
    status = resolve(Absolute(NOW + timedelta(days=2, hours=3, minutes=10)), NOW)
    assert status.display_string == "2d 3h"
    assert status.is_ended is False
    assert status.is_warning is False
    assert status.hours_remaining == pytest.approx(51 + 10 / 60)


def test_minutes_only_and_inside_warning_window() -> None:
    status = resolve(Absolute(NOW + timedelta(minutes=47, seconds=59)), NOW)
    assert status.display_string == "47m"
    assert status.is_warning is True
    assert status.badge == "warning"


def test_hours_and_minutes() -> None:
    assert resolve(Absolute(NOW + timedelta(hours=3, minutes=15)), NOW).display_string == "3h 15m"


def test_exact_deadline_is_not_ended_yet() -> None:
    status = resolve(Absolute(NOW), NOW)
    assert status.is_ended is False
    assert status.is_warning is False
    assert status.hours_remaining == 0
    assert status.display_string == "0m"


def test_one_second_past_deadline_is_ended() -> None:
    status = resolve(Absolute(NOW - timedelta(seconds=1)), NOW)
    assert status.is_ended is True
    assert status.is_warning is False
    assert status.display_string == ENDED
    assert status.hours_remaining < 0
    assert status.badge == "ended"


@pytest.mark.parametrize(
    "left, warning",
    [
        (timedelta(hours=1), True),
        (timedelta(minutes=1), True),
        (timedelta(hours=1, seconds=1), False),
        (timedelta(days=3), False),
    ],
)
def test_warning_window_is_the_final_hour(left: timedelta, warning: bool) -> None:
    assert resolve(Absolute(NOW + left), NOW).is_warning is warning


def test_missing_inputs_are_indeterminate() -> None:
    status = resolve_deadline(deadline=None, created_at=None, now=NOW)
    assert status == ResolvedStatus.indeterminate()
    assert status.display_string == NO_DEADLINE
    assert status.hours_remaining is None
    assert status.is_ended is False and status.is_warning is False
    assert status.badge == "unknown"


def test_created_at_without_duration_is_indeterminate() -> None:
    assert resolve_deadline(created_at=NOW, now=NOW).is_indeterminate


def test_fallback_duration_from_created_at() -> None:
    status = resolve_deadline(created_at=NOW, fallback_duration_hours=24, now=NOW + timedelta(hours=1))
    assert status.display_string == "23h"
    assert status.hours_remaining == pytest.approx(23)


def test_fallback_duration_runs_out() -> None:
    status = resolve_deadline(deadline=None, created_at=NOW, fallback_duration_hours=24,
                              now=NOW + timedelta(hours=25))
    assert status.is_ended is True
    assert status.is_warning is False
    assert status.display_string == ENDED
    assert status.hours_remaining == pytest.approx(-1)


def test_fallback_duration_is_open_at_its_exact_end() -> None:
    spec = Relative(NOW, 24)
    status = resolve(spec, NOW + timedelta(hours=24))
    assert status.is_ended is False
    assert status.is_warning is False
    assert status.hours_remaining == 0
    assert status.display_string == "0m"
    assert resolve(spec, NOW + timedelta(hours=24, seconds=1)).is_ended is True


def test_unparseable_deadline_falls_back_to_duration() -> None:
    spec = deadline_spec_from_fields("whenever", NOW, "12")
    assert spec == Relative(NOW, 12.0)
    assert resolve(spec, NOW).display_string == "12h"


def test_explicit_deadline_wins_over_fallback() -> None:
    status = resolve_deadline(deadline=NOW + timedelta(hours=5), created_at=NOW,
                              fallback_duration_hours=100, now=NOW)
    assert status.display_string == "5h"


@pytest.mark.parametrize(
    "raw",
    [
        "2026-03-02T12:00:00Z",
        "2026-03-02T20:00:00+08:00",
        {"seconds": int((NOW + timedelta(days=1)).timestamp()), "nanoseconds": 0},
        (NOW + timedelta(days=1)).timestamp(),
        datetime(2026, 3, 2, 12, 0),  # naive is read as UTC
    ],
)
def test_deadline_shapes_resolve_to_same_instant(raw) -> None:
    status = resolve_deadline(deadline=raw, now=NOW)
    assert status.display_string == "1d"
    assert status.hours_remaining == pytest.approx(24)


def test_unreadable_now_is_indeterminate() -> None:
    assert resolve(Absolute(NOW), "not a time at all ???").is_indeterminate


@pytest.mark.parametrize(
    "deadline, now",
    [
        (datetime(1, 1, 1, tzinfo=timezone(timedelta(hours=5))), NOW),
        (NOW, datetime.max.replace(tzinfo=timezone(timedelta(hours=-5)))),
    ],
)
def test_instants_at_the_calendar_edge_are_indeterminate(deadline, now) -> None:
    assert resolve_deadline(deadline=deadline, now=now).is_indeterminate
    assert isinstance(resolve_user_timer(Absolute(NOW), started_at=deadline, time_limit_hours=1, now=now),
                      ResolvedStatus)


def test_partial_deadline_string_does_not_depend_on_today() -> None:
    status = resolve_deadline(deadline="12:00", created_at=NOW, fallback_duration_hours=2, now=NOW)
    assert status.display_string == "2h"
    assert resolve_deadline(deadline="March", now=NOW).is_indeterminate


def test_resolution_is_pure() -> None:
    spec = Absolute(NOW + timedelta(hours=30))
    assert resolve(spec, NOW) == resolve(spec, NOW)


def test_huge_duration_does_not_raise() -> None:
    assert resolve(Relative(NOW, 1e12), NOW).is_indeterminate


def test_end_instant_rejects_non_specs() -> None:
    assert end_instant(UNSET) is None
    with pytest.raises(TypeError):
        end_instant("2026-03-01")  # type: ignore[arg-type]


def test_format_remaining_floors_to_minutes() -> None:
    assert format_remaining(timedelta(seconds=59)) == "0m"
    assert format_remaining(timedelta(hours=2, seconds=59)) == "2h"
    assert format_remaining(timedelta(seconds=-30)) == "0m"


# ---- per-user timers ----


def test_user_timer_counts_from_start() -> None:
    spec = Absolute(NOW + timedelta(days=2))
    timer = resolve_user_timer(spec, started_at=NOW, time_limit_hours=3, now=NOW + timedelta(hours=1))
    assert timer.display_string == "2h"
    assert timer.is_warning is False

    late = resolve_user_timer(spec, started_at=NOW, time_limit_hours=3, now=NOW + timedelta(hours=2, minutes=30))
    assert late.display_string == "30m"
    assert late.is_warning is True

    over = resolve_user_timer(spec, started_at=NOW, time_limit_hours=3, now=NOW + timedelta(hours=3, seconds=1))
    assert over.is_ended is True


def test_user_timer_never_outlives_the_task() -> None:
    spec = Absolute(NOW + timedelta(hours=2))
    timer = resolve_user_timer(spec, started_at=NOW, time_limit_hours=3, now=NOW + timedelta(hours=1))
    assert timer.display_string == "1h"


def test_user_timer_without_start_or_limit_is_task_deadline() -> None:
    spec = Absolute(NOW + timedelta(hours=10))
    assert resolve_user_timer(spec, None, 3, NOW) == resolve(spec, NOW)
    assert resolve_user_timer(spec, NOW, None, NOW) == resolve(spec, NOW)
    assert resolve_user_timer(UNSET, NOW, 0, NOW).is_indeterminate


def test_user_timer_with_open_ended_task() -> None:
    timer = resolve_user_timer(UNSET, started_at=NOW, time_limit_hours=0.5, now=NOW)
    assert timer.display_string == "30m"


# ---- time limit helpers ----


def test_cap_time_limit_stays_inside_deadline() -> None:
    capped = cap_time_limit_hours(5, NOW + timedelta(hours=2), NOW)
    assert capped == pytest.approx(119 / 60)


def test_cap_time_limit_keeps_short_limits() -> None:
    assert cap_time_limit_hours(1, NOW + timedelta(days=2), NOW) == pytest.approx(1.0)
    assert cap_time_limit_hours(2, None, NOW) == pytest.approx(2.0)


def test_cap_time_limit_past_deadline_leaves_one_minute() -> None:
    assert cap_time_limit_hours(4, NOW - timedelta(hours=1), NOW) == pytest.approx(1 / 60)


@pytest.mark.parametrize("raw", [None, 0, -3, "abc", float("nan")])
def test_cap_time_limit_without_a_limit(raw) -> None:
    assert cap_time_limit_hours(raw, NOW + timedelta(days=1), NOW) is None


@pytest.mark.parametrize(
    "hours, text",
    [(None, "No Limit"), (0, "No Limit"), (0.5, "30m"), (3, "3h"), (48, "2d"), ("1.5", "1h")],
)
def test_format_time_limit(hours, text: str) -> None:
    assert format_time_limit(hours) == text
