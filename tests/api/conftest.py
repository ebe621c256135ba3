"""Pytest fixtures for API tests.

Builds the app through create_app with a runtime that talks to the fake
link service and the in-memory database, and overrides get_db so owner
checks hit the same database.
"""

from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient

from linkconsole.api.main import create_app
from linkconsole.cli.config import ConsoleConfig
from linkconsole.db.connection import get_db
from linkconsole.services.runtime import ConsoleRuntime


@pytest.fixture
def runtime(session_factory, link_service) -> ConsoleRuntime:
    return ConsoleRuntime(
        ConsoleConfig(),
        session_factory,
        client=link_service,
        auto_start_scan=False,
    )


@pytest.fixture
def client(runtime, session_factory) -> Generator[TestClient, None, None]:
    """TestClient with the lifespan running and get_db overridden."""
    app = create_app(runtime_factory=lambda: runtime, run_scheduler=False)

    def override_get_db():
        db = session_factory()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
