"""
API request and response models for the KEV catalog REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in core/models.py and
auth/models.py, which own the internal domain representation.

Catalog rows are returned as plain dicts: their columns come from the feed
header and are not known until a refresh has run.

Field names follow the wire format existing clients already parse
(apiKey, recordCount), so some aliases are camelCase.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class ApiKeyResponse(BaseModel):
    """Response body for POST /api-keys. The key is shown once and never again."""

    model_config = ConfigDict(frozen=True)

    app_name: str
    apiKey: str


class RefreshResponse(BaseModel):
    """Response body for POST /update-kev."""

    model_config = ConfigDict(frozen=True)

    message: str
    recordCount: int


class CountResponse(BaseModel):
    """Response body for GET /count."""

    model_config = ConfigDict(frozen=True)

    count: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
