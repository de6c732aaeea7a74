"""
tests/conftest.py -- Shared test fixtures for the KEV catalog API.

This module provides:
  - engine: a file-backed SQLite Engine per test (tmp_path)
  - api_client: TestClient wired to isolated stores via a patched lifespan

Design: file-backed SQLite (not :memory:) because TestClient runs sync
route handlers in a thread pool and the concurrency tests hammer the store
from several threads. WAL mode plus SQLite's busy timeout lets those
threads queue for the write lock instead of failing.

DEBUG must be set before any core/api import so get_settings() accepts the
test configuration.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

# CRITICAL: Set DEBUG before any core/api import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("REFRESH_ON_STARTUP", "false")
os.environ.setdefault("REFRESH_INTERVAL_HOURS", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.store import CredentialStore
from catalog.loader import CatalogLoader
from catalog.store import CatalogStore
from core.database import create_db_engine
from tests.samples import FakeFeed

# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    eng = create_db_engine(f"sqlite:///{tmp_path / 'kev_test.db'}")
    yield eng
    eng.dispose()


@pytest.fixture
def credential_store(engine: Engine) -> CredentialStore:
    return CredentialStore(engine)


@pytest.fixture
def catalog_store(engine: Engine) -> CatalogStore:
    return CatalogStore(engine)


# ---------------------------------------------------------------------------
# App fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine, credential_store: CredentialStore, catalog: CatalogStore, loader: CatalogLoader):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see an
    isolated database and a fake feed rather than MySQL and cisa.gov.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.credential_store = credential_store
        app.state.catalog = catalog
        app.state.loader = loader
        app.state.refresh_task = None
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, dict[str, str], FakeFeed], None, None]:
    """Yield (client, auth_headers, feed) for API integration tests.

    The catalog is loaded from SAMPLE_FEED before the client starts, and a
    key for app "test-app" is issued. auth_headers carries both halves of the
    credential. raise_server_exceptions=False so the generic 500 handler's
    response is what tests see.
    """
    db_dir = tmp_path_factory.mktemp("api")
    eng = create_db_engine(f"sqlite:///{db_dir / 'kev_api.db'}")
    credential_store = CredentialStore(eng)
    catalog = CatalogStore(eng)
    feed = FakeFeed()
    loader = CatalogLoader(catalog, feed_url="https://example.test/kev.csv", temp_dir=db_dir / "tmp", fetch=feed)
    loader.refresh()

    api_key = credential_store.issue("test-app")
    headers = {"x-api-key": api_key, "app-name": "test-app"}

    app.router.lifespan_context = _patch_lifespan(eng, credential_store, catalog, loader)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield client, headers, feed

    eng.dispose()
