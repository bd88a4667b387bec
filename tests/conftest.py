"""
Pytest fixtures for transfer-metrics tests.

Everything runs against in-memory SQLite. ``sync_db_session`` is shared
with the HTTP client through a dependency override, so tests can seed rows
directly and read them back over the API.
"""

from __future__ import annotations

import os

# Must be set before the app (and its engine) are imported
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from typing import Callable, Generator  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import Session, sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from transfer_metrics.client_catalog import DEFAULT_CATALOG, ClientCatalog  # noqa: E402
from transfer_metrics.db.base import Base  # noqa: E402
from transfer_metrics.db.session import get_db  # noqa: E402
from transfer_metrics.main import app  # noqa: E402
from transfer_metrics.models import metadata_entry as _metadata_entry  # noqa: E402, F401
from transfer_metrics.models.sample import Sample  # noqa: E402


@pytest.fixture
def sync_engine():
    # StaticPool: one connection shared across threads, so the in-memory
    # database survives TestClient's worker threads
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sync_engine) -> Callable[[], Session]:
    return sessionmaker(bind=sync_engine, autoflush=False, autocommit=False)


@pytest.fixture
def sync_db_session(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def sync_client(sync_db_session):
    """Create test client with sync DB dependency override."""

    def override_get_db():
        yield sync_db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def catalog() -> ClientCatalog:
    return DEFAULT_CATALOG


@pytest.fixture
def add_samples(sync_db_session):
    """Insert raw rows: add_samples((ts, instance_id, client_type, up, down, total_up, total_down), ...)."""

    def _add(*rows):
        for ts, instance_id, client_type, up, down, total_up, total_down in rows:
            sync_db_session.add(
                Sample(
                    timestamp=ts,
                    instance_id=instance_id,
                    client_type=client_type,
                    upload_speed=up,
                    download_speed=down,
                    total_uploaded=total_up,
                    total_downloaded=total_down,
                )
            )
        sync_db_session.commit()

    return _add
