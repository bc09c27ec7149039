# tests/test_documents.py

from __future__ import annotations

import threading
import time
from datetime import datetime, timezone
from decimal import Decimal
from functools import partial
from pathlib import Path

import pytest

from questa_app.documents import DocumentStore
from questa_app.errors import BelowMinimum, DocumentNotFound


def test_set_get_merge_update_delete(store: DocumentStore) -> None:
    assert store.get("tasks", "t1") is None

    store.set("tasks", "t1", {"id": "ignored", "title": "A", "reward": 10})
    assert store.get("tasks", "t1") == {"id": "t1", "title": "A", "reward": 10}

    store.set("tasks", "t1", {"reward": 20}, merge=True)
    assert store.get("tasks", "t1") == {"id": "t1", "title": "A", "reward": 20}

    store.set("tasks", "t1", {"title": "B"})
    assert store.get("tasks", "t1") == {"id": "t1", "title": "B"}

    store.update("tasks", "t1", {"status": "inactive"})
    assert store.get("tasks", "t1")["status"] == "inactive"

    store.delete("tasks", "t1")
    assert store.get("tasks", "t1") is None


def test_update_missing_document_raises(store: DocumentStore) -> None:
    with pytest.raises(DocumentNotFound) as exc:
        store.update("users", "nobody", {"status": "disabled"})
    assert exc.value.collection == "users"
    assert exc.value.doc_id == "nobody"


def test_collections_are_separate(store: DocumentStore) -> None:
    store.set("users", "same", {"kind": "user"})
    store.set("tasks", "same", {"kind": "task"})
    assert store.get("users", "same")["kind"] == "user"
    assert store.get("tasks", "same")["kind"] == "task"
    assert store.count("users") == 1


def test_add_assigns_ids(store: DocumentStore) -> None:
    a = store.add("notifications", {"n": 1})
    b = store.add("notifications", {"n": 2})
    assert a != b
    assert len(a) == 20
    assert store.count("notifications") == 2


def test_query_filters_sorts_and_limits(store: DocumentStore) -> None:
    store.set("withdrawals", "w1", {"user_id": "u1", "amount": 50, "created_at": "2026-03-01T10:00:00+00:00"})
    store.set("withdrawals", "w2", {"user_id": "u1", "amount": 70, "created_at": "2026-03-02T10:00:00+00:00"})
    store.set("withdrawals", "w3", {"user_id": "u2", "amount": 90, "created_at": "2026-03-03T10:00:00+00:00"})
    store.set("withdrawals", "w4", {"user_id": "u1", "amount": 10})

    mine = store.query("withdrawals", where={"user_id": "u1"}, order_by="created_at", descending=True)
    assert [d["id"] for d in mine] == ["w4", "w2", "w1"]
    assert [d["id"] for d in store.query("withdrawals", order_by="amount", limit=2)] == ["w4", "w1"]
    assert store.count("withdrawals", where={"user_id": "u2"}) == 1


def test_increment_is_transactional_and_returns_new_value(store: DocumentStore) -> None:
    store.set("users", "u1", {"wallet_balance": 100})
    assert store.increment("users", "u1", "wallet_balance", 25.5) == pytest.approx(125.5)
    assert store.increment("users", "u1", "wallet_balance", -125.5) == pytest.approx(0)
    assert store.increment("users", "u1", "points", 3) == 3
    with pytest.raises(DocumentNotFound):
        store.increment("users", "ghost", "wallet_balance", 1)


def test_rich_values_are_serialized(store: DocumentStore) -> None:
    when = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    store.set("misc", "x", {"at": when, "price": Decimal("9.50"), "tags": ("a", "b")})
    doc = store.get("misc", "x")
    assert doc["at"] == "2026-03-01T12:00:00+00:00"
    assert doc["price"] == 9.5
    assert doc["tags"] == ["a", "b"]


def test_increment_floor_leaves_value_unchanged(store: DocumentStore) -> None:
    store.set("users", "u1", {"wallet_balance": 50})
    with pytest.raises(BelowMinimum) as exc:
        store.increment("users", "u1", "wallet_balance", -80, minimum=0)
    assert exc.value.value == -30
    assert store.get("users", "u1")["wallet_balance"] == 50
    assert store.increment("users", "u1", "wallet_balance", -50, minimum=0) == 0


def test_modify_returns_before_and_after(store: DocumentStore) -> None:
    store.set("users", "u1", {"wallet_balance": 70, "email": "a@example.com"})
    before, after = store.modify("users", "u1", lambda doc: {**doc, "wallet_balance": 5})
    assert before["wallet_balance"] == 70
    assert after == {"wallet_balance": 5, "email": "a@example.com"}
    assert store.get("users", "u1")["wallet_balance"] == 5


def test_modify_rolls_back_when_change_raises(store: DocumentStore) -> None:
    store.set("users", "u1", {"wallet_balance": 70})

    def boom(doc):
        doc["wallet_balance"] = 0
        raise RuntimeError("no")

    with pytest.raises(RuntimeError):
        store.modify("users", "u1", boom)
    assert store.get("users", "u1")["wallet_balance"] == 70


# ---- concurrent writers on a file database ----


@pytest.fixture()
def file_store(tmp_path: Path) -> DocumentStore:
    return DocumentStore.from_url(f"sqlite:///{tmp_path / 'questa.db'}")


@pytest.fixture()
def slow_reads(monkeypatch: pytest.MonkeyPatch) -> None:
    """Hold every locked read for a moment so concurrent writers overlap."""
    load = DocumentStore._load

    def slow_load(conn, collection, doc_id, for_update=False):
        data = load(conn, collection, doc_id, for_update)
        if for_update:
            time.sleep(0.2)
        return data

    monkeypatch.setattr(DocumentStore, "_load", staticmethod(slow_load))


def _run_together(*jobs) -> list:
    barrier = threading.Barrier(len(jobs))
    errors: list = []

    def worker(job) -> None:
        barrier.wait()
        try:
            job()
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(job,)) for job in jobs]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return errors


def test_concurrent_increments_are_not_lost(file_store: DocumentStore, slow_reads: None) -> None:
    file_store.set("users", "u", {"wallet_balance": 100})
    debit = partial(file_store.increment, "users", "u", "wallet_balance", -60)

    assert _run_together(debit, debit) == []
    assert file_store.get("users", "u")["wallet_balance"] == -20


def test_concurrent_debits_respect_the_floor(file_store: DocumentStore, slow_reads: None) -> None:
    file_store.set("users", "u", {"wallet_balance": 100})
    debit = partial(file_store.increment, "users", "u", "wallet_balance", -60, minimum=0)

    errors = _run_together(debit, debit)
    assert [type(e) for e in errors] == [BelowMinimum]
    assert file_store.get("users", "u")["wallet_balance"] == 40
