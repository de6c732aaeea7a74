from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# ---------------------------------------------------------------------------
# Domain constants
# ---------------------------------------------------------------------------

# Column names the query surface relies on. They come from the CISA header
# row, not from any schema we own.
CVE_ID_COLUMN = "cveID"
VENDOR_COLUMN = "vendorProject"


class ColumnType(str, Enum):
    INTEGER = "INTEGER"
    FLOAT = "FLOAT"
    TEXT = "TEXT"


@dataclass(frozen=True)
class CatalogColumn:
    name: str
    type: ColumnType


@dataclass
class ParsedFeed:
    headers: list[str]
    records: list[dict[str, str]] = field(default_factory=list)


@dataclass
class RefreshResult:
    record_count: int
    columns: list[CatalogColumn]
    refreshed_at: str  # ISO 8601
    source_url: Optional[str] = None
