from datetime import datetime, timezone
from typing import Iterator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from bulkimport.db import Base, create_engine_from_url, get_db
from bulkimport.main import app
from bulkimport.models import Topic
from bulkimport.services.importers import backend_for

FIXED_NOW = datetime(2024, 3, 1, 12, 30, 0, tzinfo=timezone.utc)


def fixed_clock(tz):
    return FIXED_NOW.astimezone(tz)


@pytest.fixture
def engine():
    eng = create_engine_from_url("sqlite://")
    Base.metadata.create_all(bind=eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory) -> Iterator[Session]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def backend(db):
    return backend_for(db, clock=fixed_clock)


@pytest.fixture
def client(session_factory) -> Iterator[TestClient]:
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def build_topics(n: int, **overrides) -> list[Topic]:
    return [
        Topic(**{"title": f"Topic {i}", "author_name": f"Author {i}", **overrides})
        for i in range(n)
    ]
