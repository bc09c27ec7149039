# tests/test_repository.py

from __future__ import annotations

from datetime import timedelta

import pytest

from questa_app.errors import DocumentNotFound
from questa_app.models import (
    AppSettings, ProgressStatus, ReviewStatus, Task, TaskState, UserStatus, VerificationPhase,
)
from questa_app.repository import TASK_PROGRESS, TASKS, VERIFICATIONS, WITHDRAWALS, QuestaRepository

from .conftest import T0
from .fakes import FakeClock


def test_users_and_wallet(repo: QuestaRepository) -> None:
    repo.create_user("u1", "a@example.com")
    repo.create_user("u2", "b@example.com", is_admin=True)

    assert {u.id for u in repo.list_users()} == {"u1", "u2"}
    assert repo.require_user("u2").is_admin is True
    assert repo.adjust_wallet("u1", 250) == pytest.approx(250)
    assert repo.adjust_wallet("u1", -50) == pytest.approx(200)
    # the listing was invalidated by the wallet write
    assert next(u for u in repo.list_users() if u.id == "u1").wallet_balance == pytest.approx(200)

    repo.update_user_status("u1", UserStatus.DISABLED)
    assert repo.require_user("u1").is_disabled

    with pytest.raises(DocumentNotFound):
        repo.require_user("ghost")


def test_listings_come_from_the_cache_until_forced(repo: QuestaRepository, task: Task) -> None:
    assert [t.title for t in repo.list_tasks()] == ["Reach level 10"]
    # out-of-band write that bypasses the repository
    repo.store.update(TASKS, task.id, {"title": "Renamed elsewhere"})
    assert [t.title for t in repo.list_tasks()] == ["Reach level 10"]
    assert [t.title for t in repo.list_tasks(force=True)] == ["Renamed elsewhere"]


def test_task_roundtrip_normalizes_timestamps(repo: QuestaRepository, task: Task, clock: FakeClock) -> None:
    loaded = repo.require_task(task.id)
    assert loaded.deadline == T0 + timedelta(days=2)
    assert loaded.created_at == clock.now
    assert loaded.deadline.tzinfo is not None
    assert loaded.status == TaskState.ACTIVE


def test_task_from_legacy_document(repo: QuestaRepository) -> None:
    repo.store.set(TASKS, "legacy", {
        "title": "Old task",
        "reward": "75",
        "status": "archived",
        "created_at": {"seconds": int(T0.timestamp()), "nanoseconds": 0},
        "task_deadline_hours": "48",
        "max_completions": "5",
    })
    task = repo.require_task("legacy")
    assert task.reward == 75.0
    assert task.status == TaskState.INACTIVE
    assert task.max_completions == 5
    assert task.created_at == T0
    assert task.deadline is None
    assert task.deadline_spec.duration_hours == 48.0


def test_active_tasks_and_quest_limit(repo: QuestaRepository, task: Task) -> None:
    repo.upsert_task(Task(id="", title="Hidden", status=TaskState.INACTIVE))
    assert [t.id for t in repo.list_active_tasks()] == [task.id]

    repo.update_task_max_completions(task.id, 3)
    assert repo.require_task(task.id).max_completions == 3

    repo.delete_task(task.id)
    assert repo.get_task(task.id) is None
    assert repo.list_active_tasks() == []


def test_progress_lifecycle(repo: QuestaRepository, task: Task, clock: FakeClock) -> None:
    fresh = repo.get_progress("u1", task.id)
    assert fresh.status == ProgressStatus.AVAILABLE
    assert fresh.is_started is False

    started = repo.update_progress("u1", task.id, ProgressStatus.PENDING, start=True,
                                   phase=VerificationPhase.INITIAL, reference_number="QST-1")
    assert started.started_at == T0
    assert started.is_started

    clock.advance(minutes=30)
    unlocked = repo.update_progress("u1", task.id, ProgressStatus.UNLOCKED, verification_id="v1")
    assert unlocked.started_at == T0
    assert unlocked.reference_number == "QST-1"
    assert unlocked.verification_id == "v1"

    done = repo.update_progress("u1", task.id, ProgressStatus.COMPLETE)
    assert done.started_at is None
    assert done.is_started is False
    assert [p.status for p in repo.list_progress("u1")] == [ProgressStatus.COMPLETE]


def test_legacy_completed_status_reads_as_complete(repo: QuestaRepository) -> None:
    repo.store.set(TASK_PROGRESS, "u1_t1", {"user_id": "u1", "task_id": "t1", "status": "completed"})
    assert repo.get_progress("u1", "t1").status == ProgressStatus.COMPLETE
    repo.store.set(TASK_PROGRESS, "u1_t2", {"user_id": "u1", "task_id": "t2", "status": "weird"})
    assert repo.get_progress("u1", "t2").status == ProgressStatus.AVAILABLE


def test_unknown_review_values_do_not_break_listings(repo: QuestaRepository) -> None:
    repo.store.set(VERIFICATIONS, "v1", {"user_id": "u1", "task_id": "t1", "phase": "bonus", "status": "escalated"})
    repo.store.set(VERIFICATIONS, "v2", {"user_id": "u1", "task_id": "t1"})
    repo.store.set(WITHDRAWALS, "w1", {"user_id": "u1", "amount": 10, "status": "on_hold"})

    by_id = {v.id: v for v in repo.list_verifications()}
    assert (by_id["v1"].phase, by_id["v1"].status) == (VerificationPhase.INITIAL, ReviewStatus.PENDING)
    assert (by_id["v2"].phase, by_id["v2"].status) == (VerificationPhase.INITIAL, ReviewStatus.PENDING)
    [wd] = repo.list_withdrawals()
    assert wd.status == ReviewStatus.PENDING


def test_verifications_filtering(repo: QuestaRepository, clock: FakeClock) -> None:
    v1 = repo.create_verification("u1", "t1", VerificationPhase.INITIAL, game_id="G-1", image_urls=["x"])
    clock.advance(minutes=1)
    v2 = repo.create_verification("u2", "t1", VerificationPhase.INITIAL)
    repo.update_verification(v1.id, status=ReviewStatus.APPROVED)

    assert [v.id for v in repo.list_verifications()] == [v2.id, v1.id]
    assert [v.id for v in repo.list_verifications(status=ReviewStatus.PENDING)] == [v2.id]
    assert [v.id for v in repo.list_verifications(user_id="u1", task_id="t1")] == [v1.id]
    assert repo.require_verification(v1.id).image_urls == ["x"]

    repo.delete_verification(v2.id)
    assert repo.get_verification(v2.id) is None


def test_withdrawals_and_last_request(repo: QuestaRepository, clock: FakeClock) -> None:
    assert repo.last_withdrawal_at("u1") is None
    repo.create_withdrawal("u1", 100, "gcash", "0917", reference_number="WDR-1")
    clock.advance(hours=2)
    wd = repo.create_withdrawal("u1", 50, "bank", "123")
    assert repo.last_withdrawal_at("u1") == T0 + timedelta(hours=2)

    repo.update_withdrawal(wd.id, status=ReviewStatus.REJECTED, rejection_reason="bad account")
    assert [w.amount for w in repo.list_withdrawals(user_id="u1", status=ReviewStatus.PENDING)] == [100]
    assert repo.require_withdrawal(wd.id).rejection_reason == "bad account"


def test_notifications_newest_first_and_read(repo: QuestaRepository, clock: FakeClock) -> None:
    first = repo.create_notification("u1", "balance_change", "One", "first")
    clock.advance(seconds=5)
    repo.create_notification("u1", "balance_change", "Two", "second", {"amount": 5})
    repo.create_notification("u2", "balance_change", "Other", "not mine")

    notes = repo.list_notifications("u1")
    assert [n.title for n in notes] == ["Two", "One"]
    assert notes[0].data == {"amount": 5}
    assert [n.title for n in repo.list_notifications("u1", limit=1)] == ["Two"]

    repo.mark_notification_read(first.id)
    assert next(n for n in repo.list_notifications("u1") if n.id == first.id).is_read is True
    with pytest.raises(DocumentNotFound):
        repo.mark_notification_read("missing")


def test_completion_counts(repo: QuestaRepository) -> None:
    repo.record_completion("u1", "t1", 100, verification_id="v1", completed_by="admin")
    repo.record_completion("u1", "t1", 100)
    repo.record_completion("u2", "t1", 100)
    repo.record_completion("u1", "t2", 40)

    assert repo.completion_count("t1") == 3
    assert repo.user_completion_count("u1", "t1") == 2
    assert repo.user_completion_stats("u1") == (3, pytest.approx(240))
    assert repo.user_completion_stats("nobody") == (0, 0)


def test_settings_defaults_and_save(repo: QuestaRepository) -> None:
    assert repo.load_settings() == AppSettings()
    repo.save_settings(AppSettings(support_email="s@x.io", admin_email="a@x.io",
                                   withdrawal_cooldown=0, max_withdrawal=500))
    loaded = repo.load_settings()
    assert loaded.withdrawal_cooldown == 0
    assert loaded.max_withdrawal == 500
    assert loaded.support_email == "s@x.io"
