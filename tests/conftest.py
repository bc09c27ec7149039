# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from questa_app.cache import TTLCache
from questa_app.documents import DocumentStore
from questa_app.models import Task
from questa_app.repository import QuestaRepository
from questa_app.services.admin_actions import AdminActions
from questa_app.services.user_actions import UserActions

from .fakes import FakeClock, FakeNotifier, FakeStorage

T0 = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock(T0)


@pytest.fixture()
def store() -> DocumentStore:
    """Fresh in-memory SQLite document store per test."""
    return DocumentStore.from_url("sqlite://")


@pytest.fixture()
def repo(store: DocumentStore, clock: FakeClock) -> QuestaRepository:
    return QuestaRepository(store, cache=TTLCache(ttl_seconds=60), clock=clock)


@pytest.fixture()
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture()
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture()
def users(repo: QuestaRepository, storage: FakeStorage, notifier: FakeNotifier) -> UserActions:
    return UserActions(repo, storage=storage, notifier=notifier)


@pytest.fixture()
def admin(repo: QuestaRepository, notifier: FakeNotifier) -> AdminActions:
    return AdminActions(repo, notifier=notifier, admin_id="admin-1")


@pytest.fixture()
def player(repo: QuestaRepository) -> str:
    repo.create_user("player-1", "player@example.com")
    return "player-1"


@pytest.fixture()
def task(repo: QuestaRepository) -> Task:
    """Active task ending two days after T0 with a 3h per-user limit."""
    return repo.upsert_task(Task(
        id="",
        title="Reach level 10",
        reward=150.0,
        deadline=T0 + timedelta(days=2),
        user_time_limit_hours=3.0,
    ))
