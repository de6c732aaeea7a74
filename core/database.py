"""
core/database.py -- SQLAlchemy engine factory shared by every store.

One Engine is built at startup and handed to CredentialStore, CatalogStore
and CatalogLoader. Stores never create engines of their own, so the whole
process shares a single connection pool.

SQLite (tests, local dev) gets check_same_thread=False and WAL mode so the
thread pool FastAPI runs sync routes on can share it. MySQL gets an explicit
connect timeout.

Layer rule: no imports from api/, auth/, or catalog/.
"""

from __future__ import annotations

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import URL, Engine, make_url


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(url: str | URL, connect_timeout: int = 10) -> Engine:
    """Build the process-wide Engine for the given URL.

    pool_pre_ping replaces connections the server closed while idle (MySQL's
    wait_timeout) instead of failing the first request after a quiet period.
    """
    url = make_url(url)
    connect_args: dict = {}
    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
    elif url.get_backend_name() == "mysql":
        connect_args["connect_timeout"] = connect_timeout

    engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
    if url.get_backend_name() == "sqlite":
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def check_connection(engine: Engine) -> None:
    """Round-trip a trivial query. Raises SQLAlchemyError if the store is unreachable."""
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))
