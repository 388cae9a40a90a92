"""
API Models - Pydantic models for request/response validation.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class KeyType(str, Enum):
    """Budget/lifetime class of an issued key."""

    STANDARD = "standard"
    LONG_TERM = "long-term"


class KeyStatus(str, Enum):
    """Lifecycle status of a shadow key record."""

    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


# ============================================================================
# Key Models
# ============================================================================


class CreateKeyRequest(BaseModel):
    """POST /keys request body."""

    name: str = Field(..., max_length=255)
    budget: float = Field(0.0, description="Requested max budget; clamped to the type ceiling")
    type: str = Field("", description='"standard" (default) or "long-term"')


class CreateKeyResponse(BaseModel):
    """POST /keys response - the only time the secret is ever returned."""

    key: str
    key_id: str
    mask: str
    name: str
    type: KeyType
    max_budget: float
    duration: str | None
    expires: datetime | None
    identity_confirmed: bool


class ActiveKeyResponse(BaseModel):
    """One entry of GET /keys/active."""

    key_id: str
    name: str
    mask: str
    type: KeyType
    created_at: datetime
    spend: float
    expires_at: datetime | None


class KeyHistoryItem(BaseModel):
    """One entry of GET /keys/history."""

    id: UUID
    key_id: str
    name: str
    mask: str
    type: KeyType
    status: KeyStatus
    created_at: datetime
    expires_at: datetime | None
    revoked_at: datetime | None


class DeleteKeyResponse(BaseModel):
    """DELETE /keys/{key_id} response."""

    status: str = "deleted"


# ============================================================================
# User Models
# ============================================================================


class UserInfoResponse(BaseModel):
    """GET /me response."""

    user_id: str
    user_email: str | None
    max_budget: float | None
    spend: float


# ============================================================================
# Service Models
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    version: str
    litellm_api_url: str


class ErrorResponse(BaseModel):
    """Error body returned for typed failures."""

    detail: str
