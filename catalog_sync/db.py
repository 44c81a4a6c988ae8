from __future__ import annotations

from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from catalog_sync.config import get_settings
from catalog_sync.models import Base


def _engine_connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def build_engine(url: str) -> Engine:
    built = create_engine(url, future=True, connect_args=_engine_connect_args(url))
    if url.startswith("sqlite"):
        # SQLite ignores ON DELETE CASCADE unless foreign keys are switched on per connection.
        @event.listens_for(built, "connect")
        def _enable_foreign_keys(dbapi_connection, _record) -> None:
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return built


@lru_cache()
def get_engine(url: str | None = None) -> Engine:
    return build_engine(url or get_settings().CATALOG_DB_URL)


def init_db(bind: Engine | None = None) -> None:
    Base.metadata.create_all(bind=bind or get_engine())


@contextmanager
def session_scope(url: str | None = None) -> Iterator[Session]:
    """Provide a session for one unit of work and always close it."""
    session = sessionmaker(bind=get_engine(url), autoflush=False, autocommit=False, future=True)()
    try:
        yield session
    finally:
        session.close()
