#!/usr/bin/env python3
"""
KEV Catalog API -- management CLI.

Usage:
  python main.py serve [--host 0.0.0.0] [--port 4000]
  python main.py refresh
  python main.py issue-key my-app
  python main.py list-keys my-app
  python main.py deactivate-key <64-hex key>

Environment variables (see core/config.py for the full list):
  DATABASE_URL   Full SQLAlchemy URL. Overrides DB_HOST/DB_USER/DB_PASSWORD/DB_NAME.
  KEV_URL        Feed URL (defaults to the CISA CSV export).

issue-key is the bootstrap path when REQUIRE_AUTH_FOR_KEY_ISSUANCE=true:
POST /api-keys then needs an existing key, and this command is how the first
one is made. deactivate-key is the only way to retire a key.
"""

import argparse
import logging
import sys
from typing import Optional

import requests
import uvicorn
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.store import CredentialStore
from auth.tokens import looks_like_api_key
from catalog.loader import CatalogLoader
from catalog.parser import IngestionError
from catalog.store import CatalogStore
from core.config import Settings, get_settings
from core.database import create_db_engine


def _engine(settings: Settings) -> Engine:
    return create_db_engine(settings.sqlalchemy_url(), connect_timeout=settings.db_connect_timeout)


def _cmd_refresh(args: argparse.Namespace, settings: Settings) -> int:
    engine = _engine(settings)
    try:
        loader = CatalogLoader(
            CatalogStore(engine),
            feed_url=settings.kev_url,
            temp_dir=settings.kev_temp_dir,
            timeout=settings.feed_timeout_seconds,
        )
        print(f"Downloading {settings.kev_url} ...", end=" ", flush=True)
        try:
            result = loader.refresh()
        except (IngestionError, requests.RequestException, SQLAlchemyError, OSError) as exc:
            print("failed.")
            print(f"  [!] {exc}")
            return 1
        print("done.")
        print(f"  {result.record_count} records loaded into {len(result.columns)} columns.")
        for col in result.columns:
            print(f"    {col.name:<40} {col.type.value}")
        return 0
    finally:
        engine.dispose()


def _cmd_issue_key(args: argparse.Namespace, settings: Settings) -> int:
    app_name = args.app_name.strip()
    if not app_name or len(app_name) > 100:
        print("  [!] APP_NAME must be 1-100 characters.")
        return 2
    engine = _engine(settings)
    try:
        api_key = CredentialStore(engine).issue(app_name)
    finally:
        engine.dispose()
    print(f"app_name: {app_name}")
    print(f"apiKey:   {api_key}")
    print("Store this key now -- it is not shown again by the API.")
    return 0


def _cmd_list_keys(args: argparse.Namespace, settings: Settings) -> int:
    engine = _engine(settings)
    try:
        keys = CredentialStore(engine).list_for_app(args.app_name)
    finally:
        engine.dispose()
    if not keys:
        print(f"  No keys issued to {args.app_name!r}.")
        return 0
    for key in keys:
        state = "active" if key.is_active else "inactive"
        # Only the prefix -- the full key is a credential.
        print(f"  {key.api_key[:12]}...  {state:<8}  created {key.created_at}  last used {key.last_used or 'never'}")
    return 0


def _cmd_deactivate_key(args: argparse.Namespace, settings: Settings) -> int:
    if not looks_like_api_key(args.api_key):
        print("  [!] That does not look like an API key (expected 64 lowercase hex characters).")
        return 2
    engine = _engine(settings)
    try:
        deactivated = CredentialStore(engine).deactivate(args.api_key)
    finally:
        engine.dispose()
    if not deactivated:
        print("  [!] No such API key.")
        return 1
    print("API key deactivated.")
    return 0


def _cmd_serve(args: argparse.Namespace, settings: Settings) -> int:
    uvicorn.run("asgi:app", host=args.host, port=args.port)
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="kev-catalog",
        description="Manage the CISA KEV catalog API: refresh the catalog, manage API keys, run the server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --port 4000
  python main.py refresh
  python main.py issue-key scanner-bot
  DATABASE_URL=sqlite:///kev.db python main.py refresh
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    serve.add_argument("--port", type=int, default=4000, help="Port (default: 4000)")
    serve.set_defaults(func=_cmd_serve)

    refresh = sub.add_parser("refresh", help="Download the KEV feed and replace the catalog table")
    refresh.set_defaults(func=_cmd_refresh)

    issue = sub.add_parser("issue-key", help="Issue a new API key for an application")
    issue.add_argument("app_name", metavar="APP_NAME")
    issue.set_defaults(func=_cmd_issue_key)

    list_keys = sub.add_parser("list-keys", help="List the keys issued to an application")
    list_keys.add_argument("app_name", metavar="APP_NAME")
    list_keys.set_defaults(func=_cmd_list_keys)

    deactivate = sub.add_parser("deactivate-key", help="Deactivate an API key")
    deactivate.add_argument("api_key", metavar="API_KEY")
    deactivate.set_defaults(func=_cmd_deactivate_key)

    args = parser.parse_args(argv)
    if args.command is None:
        parser.print_help()
        return 0

    logging.basicConfig(level=logging.WARNING, format="%(levelname)-5s %(name)s %(message)s")
    return args.func(args, get_settings())


if __name__ == "__main__":
    sys.exit(main())
