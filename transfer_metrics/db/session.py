from __future__ import annotations

import logging
import os
from typing import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, sessionmaker

from transfer_metrics.db.base import Base
from transfer_metrics.settings import get_settings

log = logging.getLogger(__name__)


def _enable_wal(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.close()


def build_engine(database_url: str) -> Engine:
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return create_engine(database_url, pool_pre_ping=True)

    sqlite_engine = create_engine(database_url, connect_args={"check_same_thread": False})
    event.listen(sqlite_engine, "connect", _enable_wal)
    return sqlite_engine


engine = build_engine(get_settings().database_url)
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _ensure_sqlite_dir(bind: Engine) -> None:
    if bind.url.get_backend_name() != "sqlite":
        return
    database = bind.url.database
    if not database or database == ":memory:":
        return
    db_dir = os.path.dirname(os.path.abspath(database))
    if not os.path.isdir(db_dir):
        log.info(f"Creating database directory: {db_dir}")
        os.makedirs(db_dir, exist_ok=True)


def init_db(bind: Engine | None = None) -> None:
    """Create missing tables. Safe to call on every startup."""
    # Registers the tables on Base.metadata
    from transfer_metrics.models import metadata_entry as _metadata_entry  # noqa: F401
    from transfer_metrics.models import sample as _sample  # noqa: F401

    bind = bind or engine
    _ensure_sqlite_dir(bind)
    Base.metadata.create_all(bind)
    log.info(f"Metrics database ready: {bind.url.render_as_string(hide_password=True)}")
