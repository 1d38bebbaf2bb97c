from __future__ import annotations

import os
from collections.abc import Generator

import structlog
from sqlalchemy import event, text
from sqlalchemy.engine import Engine, make_url
from sqlmodel import Session, create_engine

LOGGER = structlog.get_logger(__name__)

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    "postgresql+psycopg://org:org@db:5432/org_structure",
)
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"


def _enable_sqlite_foreign_keys(dbapi_connection: object, _connection_record: object) -> None:
    cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def build_engine(url: str) -> Engine:
    """Engine for the structure store.

    SQLite gets foreign keys switched on per connection, since the reporting
    line and assignment references rely on them.
    """
    if make_url(url).get_backend_name() == "sqlite":
        sqlite_engine = create_engine(url, echo=DB_ECHO, connect_args={"check_same_thread": False})
        event.listen(sqlite_engine, "connect", _enable_sqlite_foreign_keys)
        return sqlite_engine
    return create_engine(url, echo=DB_ECHO, pool_pre_ping=True, pool_size=DB_POOL_SIZE)


engine = build_engine(DATABASE_URL)


def get_engine() -> Engine:
    return engine


def get_session() -> Generator[Session, None, None]:
    with Session(get_engine()) as session:
        yield session


def check_db_ready() -> bool:
    try:
        with get_engine().connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        LOGGER.warning("org.db.not_ready", exc_info=True)
        return False
