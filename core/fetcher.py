"""
fetcher.py -- Download of the CISA KEV CSV feed.

The feed is fetched in one request and written to a temp file before it is
parsed. The file is the debuggable artifact of a refresh: the loader deletes
it after a successful load and leaves it behind when anything fails.

There is no retry or backoff. A failed download raises and the caller
reports it; the next scheduled or manual refresh is the retry.
"""

import logging
import os
import tempfile
from pathlib import Path

import requests

logger = logging.getLogger("kevcatalog.fetcher")

# Module-level session shared across all fetcher calls for connection pooling.
# max_redirects=3 replaces the requests default of 30 -- cisa.gov is a known
# public host, 3 hops is generous and protects against redirect chains.
_session = requests.Session()
_session.max_redirects = 3
_session.headers["User-Agent"] = "kev-catalog-api"


def download_feed(url: str, dest_dir: Path, timeout: float = 60) -> Path:
    """Download the feed at url into a new temp file under dest_dir and return its path.

    Raises requests.RequestException on network errors, timeouts and non-2xx
    responses, and OSError if the temp file cannot be written. The temp file
    name is unique per call so two downloads never clobber each other.
    """
    resp = _session.get(url, timeout=timeout)
    resp.raise_for_status()

    dest_dir.mkdir(parents=True, exist_ok=True)
    fd, name = tempfile.mkstemp(prefix="kev_catalog_", suffix=".csv", dir=dest_dir)
    with os.fdopen(fd, "wb") as fh:
        fh.write(resp.content)

    logger.info("KEV feed downloaded (%d bytes) -> %s", len(resp.content), name)
    return Path(name)
