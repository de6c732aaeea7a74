"""
catalog/loader.py -- The refresh pipeline: download, parse, validate, infer, replace.

Pipeline:
  download_feed() -> temp file -> parse_feed() -> EmptyFeedError check
  -> infer_columns(first record) -> CatalogStore.replace_catalog() -> delete temp file

Nothing touches the database until the feed has parsed and proven non-empty,
so a bad download never clears a good catalog. Once the store is involved,
replace_catalog() keeps the row swap inside one transaction.

Refreshes are serialized with a threading.Lock. Startup, the background
loop and POST /update-kev all go through refresh(), and two interleaved
DELETE/INSERT sequences would otherwise race on the same table. A second
caller blocks until the first finishes, then runs its own refresh.

The fetch callable is injectable so tests can feed CSV text without a
network. It takes (url, dest_dir, timeout) and returns the temp file path.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from catalog.parser import EmptyFeedError, parse_feed
from catalog.store import CatalogStore
from core.fetcher import download_feed
from core.models import RefreshResult
from core.schema import infer_columns

logger = logging.getLogger("kevcatalog.loader")

FetchFn = Callable[[str, Path, float], Path]


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _remove_quietly(path: Path) -> None:
    """Delete the temp file. A failure here does not fail the refresh."""
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Could not remove temp feed file %s: %s", path, exc)


class CatalogLoader:
    """Runs catalog refreshes against one CatalogStore.

    Usage:
        loader = CatalogLoader(store, feed_url=settings.kev_url, temp_dir=settings.kev_temp_dir)
        result = loader.refresh()
        print(result.record_count)
    """

    def __init__(
        self,
        store: CatalogStore,
        feed_url: str,
        temp_dir: Path,
        timeout: float = 60,
        fetch: FetchFn = download_feed,
    ) -> None:
        self.store = store
        self.feed_url = feed_url
        self.temp_dir = Path(temp_dir)
        self.timeout = timeout
        self._fetch = fetch
        self._lock = threading.Lock()

    def refresh(self) -> RefreshResult:
        """Run one full refresh and return its result.

        Raises EmptyFeedError / FeedParseError (IngestionError), or the
        underlying requests, SQLAlchemy or OS error. The first error aborts
        the refresh; there is no partial-success result.
        """
        with self._lock:
            try:
                return self._refresh()
            except Exception as exc:
                logger.error("KEV catalog refresh failed: %s", exc)
                raise

    def _refresh(self) -> RefreshResult:
        path = self._fetch(self.feed_url, self.temp_dir, self.timeout)

        feed = parse_feed(path)
        if not feed.records:
            raise EmptyFeedError("No data found in CSV file")

        columns = infer_columns(feed.records[0])
        record_count = self.store.replace_catalog(columns, feed.records)
        _remove_quietly(path)

        logger.info(
            "KEV catalog updated successfully. Total records: %d (%d columns)",
            record_count,
            len(columns),
        )
        return RefreshResult(
            record_count=record_count,
            columns=columns,
            refreshed_at=_now_iso(),
            source_url=self.feed_url,
        )
