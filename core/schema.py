"""
core/schema.py -- Column type inference for the catalog table.

Types are inferred from the FIRST data row only. Later rows are not scanned:
an INTEGER column whose second row is empty or non-numeric is still declared
INTEGER, and the value is handed to the database as-is. Whatever the store's
coercion rules do with it (NULL, truncation, an error in strict mode) is the
outcome. Keep it that way; scanning every row changes which tables get built.
"""

import re

from core.models import CatalogColumn, ColumnType

_INTEGER_RE = re.compile(r"^\d+$", re.ASCII)
_FLOAT_RE = re.compile(r"^\d*\.\d+$", re.ASCII)


def infer_type(sample_value: str | None) -> ColumnType:
    """Return the column type for a single sample value.

    "123" -> INTEGER, "1.5" / ".5" -> FLOAT, "", "  ", "abc", "12a", "-1" -> TEXT.
    """
    if sample_value is None:
        return ColumnType.TEXT
    value = sample_value.strip()
    if not value:
        return ColumnType.TEXT
    if _INTEGER_RE.match(value):
        return ColumnType.INTEGER
    if _FLOAT_RE.match(value):
        return ColumnType.FLOAT
    return ColumnType.TEXT


def infer_columns(sample_record: dict[str, str]) -> list[CatalogColumn]:
    """Build the ordered column list from one record (header order is preserved)."""
    return [CatalogColumn(name=name, type=infer_type(value)) for name, value in sample_record.items()]
