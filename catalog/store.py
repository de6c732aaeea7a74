"""
catalog/store.py -- SQLAlchemy Core persistence for the dynamically-shaped catalog table.

The catalog table has no fixed schema. Every refresh describes it again from
the feed's header row (see core/schema.py), so the Table object is built at
write time from CatalogColumn definitions and reflected from the database at
read time. There is no module-level Table here.

Pattern: Repository. Route handlers and the loader call CatalogStore methods
and never touch SQL directly.

Replace semantics:
  1. DDL first. If the table exists with a different set of column names it
     is dropped and recreated; otherwise it is created only when absent.
     MySQL commits DDL implicitly, so DDL cannot share the data transaction.
  2. DELETE + batched INSERT inside one transaction (engine.begin()). A
     failure anywhere in the load rolls back to the previous rows.

Security: values always travel as bound parameters. Column names come from
the feed header and are quoted by SQLAlchemy's identifier preparer, never
interpolated into SQL strings.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import Column, Float, Integer, MetaData, Table, Text, func, inspect, select
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import NoSuchTableError

from core.models import CVE_ID_COLUMN, VENDOR_COLUMN, CatalogColumn, ColumnType

logger = logging.getLogger("kevcatalog.catalog")

CATALOG_TABLE = "KEV_Catalog"

_SQL_TYPES = {
    ColumnType.INTEGER: Integer,
    ColumnType.FLOAT: Float,
    ColumnType.TEXT: Text,
}


class CatalogUnavailableError(Exception):
    """The catalog table (or a column a query needs) does not exist yet."""


class CatalogStore:
    """Repository for the KEV catalog table.

    Usage:
        store = CatalogStore(engine)
        store.replace_catalog(columns, records)
        rows = store.list_by_vendor("microsoft")
    """

    def __init__(self, engine: Engine, table_name: str = CATALOG_TABLE) -> None:
        self.engine = engine
        self.table_name = table_name

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    def _build_table(self, columns: list[CatalogColumn]) -> Table:
        return Table(
            self.table_name,
            MetaData(),
            *(Column(col.name, _SQL_TYPES[col.type]()) for col in columns),
        )

    def existing_columns(self) -> list[str] | None:
        """Return the column names of the stored table, or None if it does not exist."""
        inspector = inspect(self.engine)
        if not inspector.has_table(self.table_name):
            return None
        return [col["name"] for col in inspector.get_columns(self.table_name)]

    def _ensure_table(self, table: Table, columns: list[CatalogColumn]) -> None:
        """Create the table, dropping it first when the feed's column set has changed.

        Only column names are compared. A column whose inferred type changed
        keeps its old declared type until the column set itself changes.
        """
        existing = self.existing_columns()
        wanted = {col.name for col in columns}
        if existing is not None and set(existing) != wanted:
            logger.warning(
                "Catalog column set changed (added=%s, removed=%s) -- recreating %s",
                sorted(wanted - set(existing)),
                sorted(set(existing) - wanted),
                self.table_name,
            )
            table.drop(self.engine)
        table.create(self.engine, checkfirst=True)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def replace_catalog(self, columns: list[CatalogColumn], records: list[dict[str, str]]) -> int:
        """Replace every catalog row with records and return the number inserted.

        Values are passed through as strings; empty strings become NULL. Type
        coercion of mismatched values is left to the database.
        """
        table = self._build_table(columns)
        self._ensure_table(table, columns)

        rows = [{col.name: (record.get(col.name) or None) for col in columns} for record in records]
        with self.engine.begin() as conn:
            conn.execute(table.delete())
            if rows:
                conn.execute(table.insert(), rows)
        return len(rows)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _reflect(self, conn: Connection) -> Table:
        try:
            return Table(self.table_name, MetaData(), autoload_with=conn)
        except NoSuchTableError as exc:
            raise CatalogUnavailableError("The KEV catalog has not been loaded yet.") from exc

    @staticmethod
    def _column(table: Table, name: str) -> Column:
        if name not in table.c:
            raise CatalogUnavailableError(f"The KEV catalog has no {name} column.")
        return table.c[name]

    def has_catalog(self) -> bool:
        return inspect(self.engine).has_table(self.table_name)

    def list_all(self) -> list[dict[str, Any]]:
        """Return every row with all columns."""
        with self.engine.connect() as conn:
            table = self._reflect(conn)
            rows = conn.execute(select(table)).mappings().all()
        return [dict(r) for r in rows]

    def list_cve_ids(self) -> list[dict[str, Any]]:
        """Return every row projected to the identifier column, e.g. [{"cveID": "CVE-2021-44228"}]."""
        with self.engine.connect() as conn:
            table = self._reflect(conn)
            rows = conn.execute(select(self._column(table, CVE_ID_COLUMN))).mappings().all()
        return [dict(r) for r in rows]

    def count(self) -> int:
        with self.engine.connect() as conn:
            table = self._reflect(conn)
            result = conn.execute(select(func.count()).select_from(table)).scalar()
        return result or 0

    def get_by_cve(self, cve_id: str) -> list[dict[str, Any]]:
        """Return rows whose identifier equals cve_id exactly."""
        with self.engine.connect() as conn:
            table = self._reflect(conn)
            rows = conn.execute(select(table).where(self._column(table, CVE_ID_COLUMN) == cve_id)).mappings().all()
        return [dict(r) for r in rows]

    def list_by_vendor(self, vendor: str) -> list[dict[str, Any]]:
        """Return rows whose vendor matches case-insensitively."""
        with self.engine.connect() as conn:
            table = self._reflect(conn)
            vendor_col = self._column(table, VENDOR_COLUMN)
            rows = conn.execute(select(table).where(func.lower(vendor_col) == func.lower(vendor))).mappings().all()
        return [dict(r) for r in rows]
