"""
catalog/parser.py -- CSV feed parser for the KEV catalog.

Reads the downloaded feed file into header-keyed records. The file is
treated as a strict rectangle: every data row must have exactly as many
fields as the header. A ragged row means the download or the feed itself is
broken, and loading a shifted row into the catalog would be worse than
failing the refresh.

Normalization:
  - Header names and values are trimmed of surrounding whitespace.
  - Blank lines are skipped (csv.DictReader already skips empty rows).
  - A UTF-8 byte order mark, which Excel-exported CSVs carry, is dropped.

Empty values stay empty strings here; the store turns them into NULL.
"""

import csv
from pathlib import Path

from core.models import ParsedFeed


class IngestionError(Exception):
    """Base class for refresh failures raised by the catalog pipeline."""


class FeedParseError(IngestionError):
    """The feed file is not a well-formed header + rows CSV."""


class EmptyFeedError(IngestionError):
    """The feed parsed cleanly but contains no data rows."""


def parse_feed(path: Path) -> ParsedFeed:
    """Parse the CSV file at path into a ParsedFeed.

    Raises FeedParseError for malformed CSV, bytes that are not UTF-8, blank
    header names, duplicate header names and rows whose field count differs
    from the header. A header-only (or completely empty) file parses to zero
    records; rejecting that is the loader's job.
    """
    records: list[dict[str, str]] = []
    with path.open("r", encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh)
        try:
            raw_headers = reader.fieldnames
            if raw_headers is None:
                return ParsedFeed(headers=[], records=[])
            headers = _clean_headers(raw_headers)

            for row in reader:
                if _is_blank(row):
                    continue
                # restkey (None) collects extra fields; restval (None) fills missing ones.
                if None in row or any(v is None for v in row.values()):
                    raise FeedParseError(
                        f"Row on line {reader.line_num} has {_field_count(row)} fields, expected {len(headers)}."
                    )
                values = [v.strip() for v in row.values()]
                records.append(dict(zip(headers, values)))
        except csv.Error as exc:
            raise FeedParseError(f"Malformed CSV near line {reader.line_num}: {exc}") from exc
        except UnicodeDecodeError as exc:
            raise FeedParseError(f"Feed is not valid UTF-8 near line {reader.line_num}: {exc.reason}") from exc

    return ParsedFeed(headers=headers, records=records)


def _clean_headers(raw_headers) -> list[str]:
    headers = [h.strip() for h in raw_headers]
    if any(not h for h in headers):
        raise FeedParseError("Header row contains an empty column name.")
    if len(set(headers)) != len(headers):
        raise FeedParseError("Header row contains duplicate column names.")
    return headers


def _is_blank(row: dict) -> bool:
    """True for a whitespace-only line, which DictReader hands back as one short row."""
    if row.get(None):
        return False
    return all(v is None or not v.strip() for v in row.values()) and any(v is None for v in row.values())


def _field_count(row: dict) -> int:
    extra = row.get(None) or []
    return sum(1 for k, v in row.items() if k is not None and v is not None) + len(extra)
