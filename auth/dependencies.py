"""
auth/dependencies.py -- FastAPI Depends() helpers for API key authentication.

Credentials are read from the request in a fixed precedence order:
  API key:   x-api-key header  -> api_key query parameter
  App name:  app-name header   -> app_name query parameter -> "app_name" in a JSON body

require_application() is the hard gate used by every protected route.
try_get_application() is the soft variant (returns None on failure).

An unknown key, an inactive key and a key presented with the wrong (or no)
app name all produce the same 401 body, so the response never confirms that
a key exists.

Layer rule: no imports from api/, catalog/, or core/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import json
import logging

from fastapi import HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from auth.models import Application

logger = logging.getLogger("kevcatalog.auth")

API_KEY_HEADER = "x-api-key"
API_KEY_QUERY = "api_key"
APP_NAME_HEADER = "app-name"
APP_NAME_FIELD = "app_name"


def _unauthenticated(message: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail={"code": "unauthenticated", "message": message},
    )


async def _body_field(request: Request, name: str) -> str | None:
    """Return a string field from a JSON object body, or None.

    Starlette caches the body on the Request, so route handlers that read
    the body afterwards still see it.
    """
    if "json" not in request.headers.get("content-type", ""):
        return None
    raw = await request.body()
    if not raw:
        return None
    try:
        payload = json.loads(raw)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None
    value = payload.get(name)
    return value if isinstance(value, str) else None


def presented_api_key(request: Request) -> str | None:
    return request.headers.get(API_KEY_HEADER) or request.query_params.get(API_KEY_QUERY) or None


async def presented_app_name(request: Request) -> str | None:
    """Return the presented app name with surrounding whitespace removed, or None.

    Key issuance stores the same stripped form, so " app1" and "app1" name
    the same application on both sides.
    """
    app_name = (
        request.headers.get(APP_NAME_HEADER)
        or request.query_params.get(APP_NAME_FIELD)
        or await _body_field(request, APP_NAME_FIELD)
    )
    if app_name is None:
        return None
    return app_name.strip() or None


async def try_get_application(request: Request) -> Application | None:
    """Authenticate the request and return its Application, or None.

    Never raises for bad credentials. A store failure still raises HTTP 500:
    "the database is down" must not look like "your key is wrong".
    """
    api_key = presented_api_key(request)
    if not api_key:
        return None
    app_name = await presented_app_name(request)
    if not app_name:
        return None

    credential_store = request.app.state.credential_store
    try:
        application = await run_in_threadpool(credential_store.authenticate, api_key, app_name)
    except SQLAlchemyError as exc:
        logger.error("API key lookup failed: %s", exc)
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "Failed to authenticate API key"},
        ) from exc

    if application is not None:
        request.state.application = application
    return application


async def require_application(request: Request) -> Application:
    """Require a valid (api_key, app_name) pair. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(application: Application = Depends(require_application)): ...

    On success the record is also available as request.state.application.
    """
    if not presented_api_key(request):
        raise _unauthenticated("API key is required")
    application = await try_get_application(request)
    if application is None:
        raise _unauthenticated("Invalid API key")
    return application
