"""
api/routes/keys.py -- API key issuance.

Routes:
  POST /api-keys  -- issue a key for an application name; returns it once

Auth policy:
  Open by default, as it has always been. With REQUIRE_AUTH_FOR_KEY_ISSUANCE
  set, the caller must already hold a valid key (for any application), and
  the first key has to come from `python main.py issue-key`.

The application name is read with the same precedence the auth gate uses:
app-name header, app_name query parameter, app_name in a JSON body.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from api.models import ApiKeyResponse, ErrorDetail
from auth.dependencies import presented_app_name, require_application
from core.config import get_settings

logger = logging.getLogger("kevcatalog.api")

router = APIRouter()

_MAX_APP_NAME = 100


@router.post("/api-keys", response_model=ApiKeyResponse, status_code=201)
async def create_api_key(request: Request) -> ApiKeyResponse:
    """Issue a new API key bound to the supplied application name."""
    if get_settings().require_auth_for_key_issuance:
        await require_application(request)

    app_name = await presented_app_name(request)
    if not app_name:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(
                code="app_name_required",
                message="app_name is required (app-name header, app_name query parameter, or JSON body).",
            ).model_dump(),
        )
    if len(app_name) > _MAX_APP_NAME:
        raise HTTPException(
            status_code=400,
            detail=ErrorDetail(
                code="app_name_too_long",
                message=f"app_name must be at most {_MAX_APP_NAME} characters.",
            ).model_dump(),
        )

    credential_store = request.app.state.credential_store
    api_key = await run_in_threadpool(credential_store.issue, app_name)
    logger.info("Issued API key for app %r", app_name)
    return ApiKeyResponse(app_name=app_name, apiKey=api_key)
