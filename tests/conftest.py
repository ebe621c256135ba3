"""Root-level pytest fixtures for all tests.

Provides:
- In-memory SQLite (StaticPool) engine and session factory
- A ConnectionStore bound to that database
- A programmable fake link service
"""

from collections.abc import Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from linkconsole.db.models import Base
from linkconsole.services.connection_store import ConnectionStore
from tests.helpers import FakeLinkService


@pytest.fixture
def db_engine():
    """In-memory SQLite engine shared across sessions via StaticPool."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine) -> Callable[[], Session]:
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(session_factory) -> ConnectionStore:
    return ConnectionStore(session_factory)


@pytest.fixture
def link_service() -> FakeLinkService:
    return FakeLinkService()
