"""Shared test fixtures for the SysMobembo indicators API."""

from __future__ import annotations

import os

# Settings are read at import time
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from sysmobembo.core.database import get_session_factory  # noqa: E402
from sysmobembo.ingestion.init_db import init_db  # noqa: E402


@pytest.fixture()
def engine(tmp_path):
    """File-backed SQLite so worker threads can each open their own connection."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'indicators.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture()
def app(session_factory):
    from sysmobembo.main import app

    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield app
    app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    """HTTP test client (runs the app lifespan)."""
    with TestClient(app) as c:
        yield c
