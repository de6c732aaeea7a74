"""
tests/test_lifespan.py -- Startup refresh and the background refresh loop.

Covers:
  - the real lifespan starts when the first refresh fails (network, bad bytes)
    and /health reports the catalog as not loaded
  - a successful startup refresh loads the catalog
  - the refresh task is running while the app serves
  - _refresh_loop keeps going after failed refreshes

The real lifespan is swapped back in for these tests; conftest's api_client
replaces it with a patched one for the route tests.
"""

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
import requests
from fastapi.testclient import TestClient

from api.main import _refresh_loop, app, lifespan
from catalog.parser import FeedParseError
from core.config import Settings
from core.models import RefreshResult
from tests.samples import SAMPLE_FEED


def _settings(tmp_path, **overrides) -> Settings:
    values = {
        "database_url": f"sqlite:///{tmp_path / 'kev_lifespan.db'}",
        "kev_url": "https://example.test/kev.csv",
        "kev_temp_dir": tmp_path / "tmp",
        "refresh_on_startup": True,
        "refresh_interval_hours": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def run_app(tmp_path):
    """Return a factory that patches settings and restores the real lifespan."""

    def _run(**overrides):
        settings = _settings(tmp_path, **overrides)
        return patch("api.main.get_settings", return_value=settings)

    with patch.object(app.router, "lifespan_context", lifespan):
        yield _run


def _feed_response(content: bytes) -> MagicMock:
    resp = MagicMock()
    resp.content = content
    return resp


class TestStartupRefresh:
    def test_unreachable_feed_does_not_block_startup(self, run_app):
        with run_app(), patch("core.fetcher._session") as session:
            session.get.side_effect = requests.ConnectionError("cisa.gov unreachable")
            with TestClient(app, raise_server_exceptions=False) as client:
                data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["components"]["catalog"] == "not_loaded"

    def test_invalid_utf8_feed_does_not_block_startup(self, run_app):
        with run_app(), patch("core.fetcher._session") as session:
            session.get.return_value = _feed_response(b"cveID,vendorProject\nCVE-2024-0001,Acme\xff\xfe\n")
            with TestClient(app, raise_server_exceptions=False) as client:
                data = client.get("/health").json()
        assert data["components"]["catalog"] == "not_loaded"

    def test_successful_startup_refresh_loads_catalog(self, run_app):
        with run_app(), patch("core.fetcher._session") as session:
            session.get.return_value = _feed_response(SAMPLE_FEED.encode("utf-8"))
            with TestClient(app, raise_server_exceptions=False) as client:
                assert client.app.state.catalog.count() == 3
                assert client.get("/health").json()["components"]["catalog"] == "ok"

    def test_refresh_task_runs_while_serving(self, run_app):
        with run_app(refresh_on_startup=False, refresh_interval_hours=1):
            with TestClient(app, raise_server_exceptions=False) as client:
                task = client.app.state.refresh_task
                assert task is not None
                assert not task.done()


class _StopLoop(Exception):
    pass


class TestRefreshLoop:
    def test_failed_refreshes_do_not_end_the_loop(self):
        loader = MagicMock()
        loader.refresh.side_effect = [
            FeedParseError("Feed is not valid UTF-8"),
            RuntimeError("unexpected"),
            RefreshResult(record_count=3, columns=[], refreshed_at="2026-01-01T00:00:00+00:00"),
        ]
        fake_app = SimpleNamespace(state=SimpleNamespace(loader=loader))
        sleeps = []

        async def fake_sleep(seconds):
            sleeps.append(seconds)
            if len(sleeps) > 3:
                raise _StopLoop

        with patch("api.main.asyncio.sleep", fake_sleep):
            with pytest.raises(_StopLoop):
                asyncio.run(_refresh_loop(fake_app, 2))

        assert loader.refresh.call_count == 3
        assert sleeps == [2 * 60 * 60] * 4
