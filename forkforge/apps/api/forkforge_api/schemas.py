"""Pydantic schemas for API requests/responses."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

# Ten years; keeps clock() + timedelta inside the datetime range
MAX_EXPIRES_IN_SECONDS = 10 * 365 * 24 * 3600

# ============================================================================
# RFC 9457 Problem Details
# ============================================================================


class ProblemDetail(BaseModel):
    """RFC 9457 Problem Details for HTTP API errors.

    ``error`` carries the stable machine-readable code (e.g.
    ``invalid_or_expired_token``).
    """

    type: str = Field(..., description="URI reference identifying the problem type")
    title: str = Field(..., description="Short, human-readable summary")
    status: int = Field(..., description="HTTP status code")
    detail: str | dict[str, Any] = Field(..., description="Human-readable explanation or structured error details")
    instance: Optional[str] = Field(None, description="URI reference identifying the specific occurrence")
    error: Optional[str] = Field(None, description="Stable error code")
    request_id: Optional[str] = Field(None, description="X-Request-ID of the failing request")


# ============================================================================
# API keys
# ============================================================================


class ApiKeyCreateRequest(BaseModel):
    """Request body for POST /auth/api-keys."""

    user_id: str = Field(..., min_length=1, max_length=64, description="Owner user id")
    label: Optional[str] = Field(None, max_length=255, description="Human-readable label")
    expires_in_seconds: Optional[int] = Field(
        None,
        ge=1,
        le=MAX_EXPIRES_IN_SECONDS,
        description="Lifetime in seconds (null = long-lived)",
    )


class ApiKeyCreateResponse(BaseModel):
    """Response for POST /auth/api-keys (display-once)."""

    key: str = Field(..., description="Raw secret (display ONCE, never stored)")
    key_id: str = Field(..., description="Credential id")
    label: Optional[str] = Field(None, description="Label")
    expires_at: Optional[datetime] = Field(None, description="Expiration timestamp (null = long-lived)")
    created_at: datetime = Field(..., description="Creation timestamp")


class AuthContextResponse(BaseModel):
    """Response for GET /auth/me."""

    user_id: str
    credential_id: str
    subscription_status: str
    subscription_tier: str
    long_lived: bool


# ============================================================================
# Billing webhook
# ============================================================================


class WebhookAck(BaseModel):
    """Response for POST /billing/webhook."""

    status: str = Field(..., description="processed | already_processed | ignored")
