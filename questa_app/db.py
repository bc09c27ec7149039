from __future__ import annotations
from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

def _begin_immediate(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front
    @event.listens_for(engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

def make_engine(database_url: str) -> Engine:
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection, otherwise every checkout sees a fresh empty db
        return create_engine(
            database_url,
            future=True,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    if database_url.startswith("sqlite"):
        engine = create_engine(database_url, future=True, connect_args={"check_same_thread": False, "timeout": 30})
        _begin_immediate(engine)
        return engine
    return create_engine(database_url, future=True, pool_pre_ping=True)

def init_db(engine: Engine) -> None:
    with engine.begin() as conn:
        conn.execute(text("""
        CREATE TABLE IF NOT EXISTS documents (
            collection TEXT NOT NULL,
            id TEXT NOT NULL,
            data TEXT NOT NULL,
            created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            updated_at DATETIME DEFAULT CURRENT_TIMESTAMP,
            PRIMARY KEY (collection, id)
        );
        """))
        conn.execute(text(
            "CREATE INDEX IF NOT EXISTS ix_documents_collection ON documents (collection)"
        ))
