"""
auth/store.py -- SQLAlchemy Core persistence layer for API credentials.

Pattern: Repository + Data Mapper (same as catalog/store.py).
CredentialStore is the repository; _row_to_application is the mapper.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  authenticate() matches key AND app_name AND is_active in one query. The
  caller only learns "matched" or "did not match" -- never which of the
  three conditions failed.

The Engine is injected. The store does not own it and close() is the
caller's business (api/main.py lifespan disposes it once for all stores).

Layer rule: no imports from api/, catalog/, or core/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

from auth.models import Application
from auth.tokens import generate_api_key

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_api_keys = Table(
    "api_keys",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("api_key", String(64), nullable=False, unique=True),
    Column("app_name", String(100), nullable=False),
    Column("created_at", String(32), nullable=False),
    Column("last_used", String(32)),  # ISO 8601 timestamp of last successful auth
    Column("is_active", Integer, nullable=False, server_default="1"),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    # Fixed microsecond precision keeps stored values the same width, so they
    # also sort correctly as strings.
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for Application (API key) records.

    Usage:
        store = CredentialStore(engine)
        key = store.issue("scanner-bot")
        app = store.authenticate(key, "scanner-bot")   # Application or None
        store.deactivate(key)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        _metadata.create_all(self.engine)

    def issue(self, app_name: str) -> str:
        """Create an active key for app_name and return the raw key.

        Raises sqlalchemy.exc.IntegrityError on a key collision (UNIQUE on
        api_key). No retry: at 256 bits a collision means something is wrong
        with the random source, not bad luck.
        """
        api_key = generate_api_key()
        with self.engine.connect() as conn:
            conn.execute(
                _api_keys.insert().values(
                    api_key=api_key,
                    app_name=app_name,
                    created_at=_now_iso(),
                    is_active=1,
                )
            )
            conn.commit()
        return api_key

    def authenticate(self, api_key: str, app_name: str) -> Application | None:
        """Return the active record matching both api_key and app_name exactly, or None.

        Matching is case-sensitive on both values. A successful match stamps
        last_used before returning, so the returned record carries the new
        timestamp.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _api_keys.select().where(
                    (_api_keys.c.api_key == api_key) & (_api_keys.c.app_name == app_name) & (_api_keys.c.is_active == 1)
                )
            ).first()
            if row is None:
                return None
            # MySQL's default collation compares case-insensitively; re-check in
            # Python so "App1" never authenticates as "app1".
            if row.api_key != api_key or row.app_name != app_name:
                return None
            last_used = _now_iso()
            conn.execute(_api_keys.update().where(_api_keys.c.id == row.id).values(last_used=last_used))
            conn.commit()
        application = _row_to_application(row)
        application.last_used = last_used
        return application

    def get(self, api_key: str) -> Application | None:
        """Look up a key regardless of its active state. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_api_keys.select().where(_api_keys.c.api_key == api_key)).first()
        if row is None or row.api_key != api_key:
            return None
        return _row_to_application(row)

    def deactivate(self, api_key: str) -> bool:
        """Deactivate a key. Returns True if a row was updated, False if the key is unknown."""
        with self.engine.connect() as conn:
            result = conn.execute(_api_keys.update().where(_api_keys.c.api_key == api_key).values(is_active=0))
            conn.commit()
        return result.rowcount > 0

    def list_for_app(self, app_name: str) -> list[Application]:
        """Return every key issued to app_name (active and inactive), oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_keys.select().where(_api_keys.c.app_name == app_name).order_by(_api_keys.c.created_at)
            ).fetchall()
        return [_row_to_application(r) for r in rows if r.app_name == app_name]


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_application(row) -> Application:
    return Application(
        id=row.id,
        api_key=row.api_key,
        app_name=row.app_name,
        created_at=row.created_at,
        last_used=row.last_used,
        is_active=bool(row.is_active),
    )
