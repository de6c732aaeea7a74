"""Unit tests for catalog/loader.py -- the refresh pipeline.

The network is replaced by FakeFeed (tests/samples.py); everything else
(parser, inferrer, store) is real and runs against a temp SQLite file.

Covers:
- N rows in the feed -> N rows in the table, every header column queryable
- types inferred from the first row only
- header-only feed raises EmptyFeedError and leaves the previous catalog alone
- parse and fetch failures propagate and leave the previous catalog alone
- temp file removed on success, kept on failure, cleanup errors swallowed
- concurrent refreshes are serialized
"""

import threading
import time
from unittest.mock import patch

import pytest
import requests

from catalog.loader import CatalogLoader
from catalog.parser import EmptyFeedError, FeedParseError
from core.models import ColumnType
from tests.samples import NUMERIC_FEED, SAMPLE_HEADERS, FakeFeed


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def loader(catalog_store, feed, tmp_path):
    return CatalogLoader(catalog_store, feed_url="https://example.test/kev.csv", temp_dir=tmp_path / "tmp", fetch=feed)


class TestRefreshSuccess:
    def test_record_count_matches_feed_rows(self, loader, catalog_store):
        result = loader.refresh()
        assert result.record_count == 3
        assert catalog_store.count() == 3

    def test_every_header_column_is_queryable(self, loader, catalog_store):
        loader.refresh()
        assert catalog_store.existing_columns() == SAMPLE_HEADERS
        row = catalog_store.get_by_cve("CVE-2022-30190")[0]
        assert set(row) == set(SAMPLE_HEADERS)
        # Values were trimmed and empty notes stored as NULL.
        assert row["shortDescription"] == "Microsoft Windows MSDT contains a remote code execution vulnerability."
        assert row["notes"] is None

    def test_result_describes_columns_and_source(self, loader):
        result = loader.refresh()
        assert [c.name for c in result.columns] == SAMPLE_HEADERS
        assert all(c.type == ColumnType.TEXT for c in result.columns)
        assert result.source_url == "https://example.test/kev.csv"
        assert result.refreshed_at

    def test_types_inferred_from_first_row(self, loader, feed, catalog_store):
        feed.text = NUMERIC_FEED
        result = loader.refresh()
        types = {c.name: c.type for c in result.columns}
        assert types == {
            "cveID": ColumnType.TEXT,
            "vendorProject": ColumnType.TEXT,
            "score": ColumnType.FLOAT,
            "rank": ColumnType.INTEGER,
        }
        assert catalog_store.get_by_cve("CVE-2024-0002")[0]["rank"] == 2

    def test_later_rows_do_not_change_inferred_type(self, loader, feed):
        feed.text = "cveID,rank\nCVE-2024-0001,1\nCVE-2024-0002,n/a\n"
        result = loader.refresh()
        assert {c.name: c.type for c in result.columns}["rank"] == ColumnType.INTEGER

    def test_temp_file_removed_on_success(self, loader, feed):
        loader.refresh()
        assert len(feed.paths) == 1
        assert not feed.paths[0].exists()

    def test_temp_file_cleanup_failure_is_swallowed(self, loader):
        with patch("pathlib.Path.unlink", side_effect=PermissionError("read-only")):
            result = loader.refresh()
        assert result.record_count == 3

    def test_refresh_replaces_previous_catalog(self, loader, feed, catalog_store):
        loader.refresh()
        feed.text = NUMERIC_FEED
        loader.refresh()
        assert catalog_store.count() == 2
        assert catalog_store.existing_columns() == ["cveID", "vendorProject", "score", "rank"]


class TestRefreshFailure:
    def test_header_only_feed_raises_empty_feed_error(self, loader, feed):
        feed.text = "cveID,vendorProject\n"
        with pytest.raises(EmptyFeedError, match="No data found"):
            loader.refresh()

    def test_empty_feed_leaves_previous_catalog_untouched(self, loader, feed, catalog_store):
        loader.refresh()
        before = catalog_store.list_all()
        feed.text = ",".join(SAMPLE_HEADERS) + "\n"
        with pytest.raises(EmptyFeedError):
            loader.refresh()
        assert catalog_store.list_all() == before

    def test_empty_feed_creates_no_table(self, loader, feed, catalog_store):
        feed.text = ""
        with pytest.raises(EmptyFeedError):
            loader.refresh()
        assert catalog_store.has_catalog() is False

    def test_parse_error_propagates_and_keeps_catalog(self, loader, feed, catalog_store):
        loader.refresh()
        feed.text = "cveID,vendorProject\nCVE-2024-0001,Acme,extra\n"
        with pytest.raises(FeedParseError):
            loader.refresh()
        assert catalog_store.count() == 3

    def test_invalid_utf8_feed_is_a_parse_error(self, loader, feed, catalog_store):
        loader.refresh()
        feed.text = b"cveID,vendorProject\nCVE-2024-0001,Acme\xff\xfe\n"
        with pytest.raises(FeedParseError, match="not valid UTF-8"):
            loader.refresh()
        assert catalog_store.count() == 3

    def test_parse_error_keeps_temp_file(self, loader, feed):
        feed.text = "a,b\n1\n"
        with pytest.raises(FeedParseError):
            loader.refresh()
        assert feed.paths[-1].exists()

    def test_fetch_error_propagates(self, loader, feed, catalog_store):
        loader.refresh()
        feed.error = requests.ConnectionError("cisa.gov unreachable")
        with pytest.raises(requests.ConnectionError):
            loader.refresh()
        assert catalog_store.count() == 3


class TestRefreshSerialization:
    def test_concurrent_refreshes_do_not_overlap(self, catalog_store, tmp_path):
        active = 0
        max_active = 0
        guard = threading.Lock()
        inner = FakeFeed()

        def slow_fetch(url, dest_dir, timeout):
            nonlocal active, max_active
            with guard:
                active += 1
                max_active = max(max_active, active)
            time.sleep(0.05)
            with guard:
                active -= 1
            return inner(url, dest_dir, timeout)

        loader = CatalogLoader(catalog_store, feed_url="https://example.test/kev.csv", temp_dir=tmp_path, fetch=slow_fetch)
        threads = [threading.Thread(target=loader.refresh) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert max_active == 1
        assert inner.calls == 4
        assert catalog_store.count() == 3
