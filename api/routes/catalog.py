"""
api/routes/catalog.py -- KEV catalog refresh and read endpoints.

Route registration order matters here. FastAPI resolves routes in the order
they are added to the router, and GET /{vendor} matches ANY single path
segment. It must be registered last (and this router must be included after
every other router in api/main.py) or it would swallow /cve, /count, /health
and /docs.

Every route requires a valid (api_key, app_name) pair via
require_application. Handlers are plain `def` so FastAPI runs the blocking
database and network calls in its thread pool.
"""

from __future__ import annotations

from typing import Any

import requests
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import SQLAlchemyError

from api.models import CountResponse, ErrorDetail, RefreshResponse
from auth.dependencies import require_application
from auth.models import Application
from catalog.parser import IngestionError

router = APIRouter()


# ---------------------------------------------------------------------------
# Route 1: POST /update-kev -- manual refresh
# ---------------------------------------------------------------------------


@router.post("/update-kev", response_model=RefreshResponse)
def update_kev(request: Request, application: Application = Depends(require_application)) -> RefreshResponse:
    """Download the feed and replace the catalog. Blocks until the refresh finishes.

    A refresh already in progress (startup, background loop, another caller)
    is waited for, not joined: this request then runs its own refresh.
    """
    loader = request.app.state.loader
    try:
        result = loader.refresh()
    except (IngestionError, requests.RequestException, SQLAlchemyError, OSError) as exc:
        raise HTTPException(
            status_code=500,
            detail=ErrorDetail(code="refresh_failed", message=str(exc)).model_dump(),
        ) from exc
    return RefreshResponse(message="KEV catalog updated successfully", recordCount=result.record_count)


# ---------------------------------------------------------------------------
# Route 2: GET /cve -- identifiers only
# ---------------------------------------------------------------------------


@router.get("/cve")
def list_cve_ids(request: Request, application: Application = Depends(require_application)) -> list[dict[str, Any]]:
    """Return [{"cveID": ...}, ...] for every catalog row."""
    return request.app.state.catalog.list_cve_ids()


# ---------------------------------------------------------------------------
# Route 3: GET /count
# ---------------------------------------------------------------------------


@router.get("/count", response_model=CountResponse)
def count_records(request: Request, application: Application = Depends(require_application)) -> CountResponse:
    return CountResponse(count=request.app.state.catalog.count())


# ---------------------------------------------------------------------------
# Route 4: GET /cve/{cve_id} -- exact identifier match
# ---------------------------------------------------------------------------


@router.get("/cve/{cve_id}")
def get_cve(
    request: Request,
    cve_id: str,
    application: Application = Depends(require_application),
) -> list[dict[str, Any]]:
    """Return the rows whose identifier equals cve_id. An unknown ID returns []."""
    return request.app.state.catalog.get_by_cve(cve_id)


# ---------------------------------------------------------------------------
# Route 5: GET / -- full catalog
# ---------------------------------------------------------------------------


@router.get("/")
def list_all(request: Request, application: Application = Depends(require_application)) -> list[dict[str, Any]]:
    return request.app.state.catalog.list_all()


# ---------------------------------------------------------------------------
# Route 6: GET /{vendor} -- registered LAST so every literal path above wins
# ---------------------------------------------------------------------------


@router.get("/{vendor}")
def list_by_vendor(
    request: Request,
    vendor: str,
    application: Application = Depends(require_application),
) -> list[dict[str, Any]]:
    """Return rows whose vendorProject matches vendor, ignoring case."""
    return request.app.state.catalog.list_by_vendor(vendor)
