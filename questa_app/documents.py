"""
Document-database adapter.

Collections of JSON documents addressed by ``(collection, id)``, stored in a
single SQL table through SQLAlchemy. The API mirrors what the dashboards
need from a managed document store: point reads/writes, merge updates,
equality queries and locked read-modify-write updates (numeric increments
with an optional floor among them).
"""
from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from .db import init_db, make_engine
from .errors import BelowMinimum, DocumentNotFound
from .timestamps import to_iso

logger = logging.getLogger(__name__)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _dumps(data: Mapping[str, Any]) -> str:
    return json.dumps(dict(data), ensure_ascii=False, default=_json_default)


def _sort_key(value: Any):
    if value is None:
        return (1, 0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value, "")
    return (0, 0, str(value))


def new_doc_id() -> str:
    return uuid.uuid4().hex[:20]


class DocumentStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    @classmethod
    def from_url(cls, database_url: str) -> "DocumentStore":
        store = cls(make_engine(database_url))
        store.init_schema()
        return store

    def init_schema(self) -> None:
        init_db(self.engine)
        logger.info("document store ready url=%s", self.engine.url.render_as_string(hide_password=True))

    # ---- low-level helpers ----

    @staticmethod
    def _load(
        conn: Connection, collection: str, doc_id: str, for_update: bool = False
    ) -> Optional[Dict[str, Any]]:
        sql = "SELECT data FROM documents WHERE collection=:c AND id=:id"
        # sqlite has no row locks; file databases lock at BEGIN IMMEDIATE (db.make_engine)
        if for_update and conn.dialect.name != "sqlite":
            sql += " FOR UPDATE"
        row = conn.execute(text(sql), {"c": collection, "id": doc_id}).first()
        return json.loads(row[0]) if row else None

    @staticmethod
    def _write(conn: Connection, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        conn.execute(
            text("""INSERT INTO documents (collection, id, data) VALUES (:c, :id, :data)
                    ON CONFLICT (collection, id)
                    DO UPDATE SET data=excluded.data, updated_at=CURRENT_TIMESTAMP"""),
            {"c": collection, "id": doc_id, "data": _dumps(data)},
        )

    # ---- documents ----

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with self.engine.connect() as conn:
            data = self._load(conn, collection, doc_id)
        return {"id": doc_id, **data} if data is not None else None

    def set(self, collection: str, doc_id: str, data: Mapping[str, Any], merge: bool = False) -> None:
        payload = {k: v for k, v in data.items() if k != "id"}
        with self.engine.begin() as conn:
            if merge:
                current = self._load(conn, collection, doc_id, for_update=True) or {}
                current.update(payload)
                payload = current
            self._write(conn, collection, doc_id, payload)

    def update(self, collection: str, doc_id: str, data: Mapping[str, Any]) -> None:
        changes = {k: v for k, v in data.items() if k != "id"}
        self.modify(collection, doc_id, lambda doc: {**doc, **changes})

    def modify(
        self, collection: str, doc_id: str, change: Callable[[Dict[str, Any]], Dict[str, Any]]
    ) -> Tuple[Dict[str, Any], Dict[str, Any]]:
        """
        Rewrite one document while holding its lock and return ``(before, after)``.

        ``change`` receives a copy of the stored data and returns the new data.
        If it raises, the transaction rolls back and nothing is written.
        """
        with self.engine.begin() as conn:
            before = self._load(conn, collection, doc_id, for_update=True)
            if before is None:
                raise DocumentNotFound(collection, doc_id)
            after = change(dict(before))
            self._write(conn, collection, doc_id, after)
        return before, after

    def add(self, collection: str, data: Mapping[str, Any]) -> str:
        doc_id = new_doc_id()
        self.set(collection, doc_id, data)
        return doc_id

    def delete(self, collection: str, doc_id: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                text("DELETE FROM documents WHERE collection=:c AND id=:id"),
                {"c": collection, "id": doc_id},
            )

    def query(
        self,
        collection: str,
        where: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                text("SELECT id, data FROM documents WHERE collection=:c"), {"c": collection}
            ).all()
        docs = [{"id": r[0], **json.loads(r[1])} for r in rows]
        if where:
            docs = [d for d in docs if all(d.get(k) == v for k, v in where.items())]
        if order_by:
            docs.sort(key=lambda d: _sort_key(d.get(order_by)), reverse=descending)
        if limit is not None:
            docs = docs[:limit]
        return docs

    def count(self, collection: str, where: Optional[Mapping[str, Any]] = None) -> int:
        return len(self.query(collection, where=where))

    def increment(
        self, collection: str, doc_id: str, field: str, amount: float, minimum: Optional[float] = None
    ) -> float:
        """
        Add ``amount`` to a numeric field under the document lock; returns the new value.

        With ``minimum`` set, a result below it raises ``BelowMinimum`` and the
        stored value is left unchanged.
        """
        def add(doc: Dict[str, Any]) -> Dict[str, Any]:
            new_value = (doc.get(field) or 0) + amount
            if minimum is not None and new_value < minimum:
                raise BelowMinimum(collection, doc_id, field, new_value)
            doc[field] = new_value
            return doc

        return self.modify(collection, doc_id, add)[1][field]
