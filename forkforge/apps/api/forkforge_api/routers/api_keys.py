"""API key endpoints.

Credential lifecycle over HTTP: operator issuance, owner revocation, and
the authenticated caller's own context.

AUTHENTICATION:
- POST   /auth/api-keys           X-Admin-Token (operator)
- DELETE /auth/api-keys/{key_id}  Bearer (credential owner)
- GET    /auth/me                 Bearer

SECURITY:
- Display-once: the raw key is returned only in the 201 response
- Stealth 404: revoking a key owned by someone else looks like a missing key
"""

import logging
from datetime import timedelta

from fastapi import APIRouter, Depends, Response, status

from forkforge_api.auth.dependencies import (
    get_clock,
    get_issuer,
    require_admin_token,
    require_auth_context,
)
from forkforge_api.auth.issuer import Clock, CredentialIssuer
from forkforge_api.auth.verifier import AuthContext
from forkforge_api.schemas import ApiKeyCreateRequest, ApiKeyCreateResponse, AuthContextResponse

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.post(
    "/api-keys",
    status_code=status.HTTP_201_CREATED,
    response_model=ApiKeyCreateResponse,
    dependencies=[Depends(require_admin_token)],
)
def create_api_key(
    request: ApiKeyCreateRequest,
    issuer: CredentialIssuer = Depends(get_issuer),
    clock: Clock = Depends(get_clock),
) -> ApiKeyCreateResponse:
    """Issue an API key for an existing user.

    Returns the raw key ONCE (never stored, never returned again).

    Raises:
        Unauthenticated 401: Missing/invalid X-Admin-Token
        NotFound 404: Unknown user
        Conflict 409: User already holds a long-lived key
    """
    expires_at = None
    if request.expires_in_seconds is not None:
        expires_at = clock() + timedelta(seconds=request.expires_in_seconds)

    issued = issuer.issue(request.user_id, label=request.label, expires_at=expires_at)

    return ApiKeyCreateResponse(
        key=issued.secret,
        key_id=issued.credential_id,
        label=issued.label,
        expires_at=issued.expires_at,
        created_at=issued.created_at,
    )


@router.delete("/api-keys/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
def revoke_api_key(
    key_id: str,
    auth: AuthContext = Depends(require_auth_context),
    issuer: CredentialIssuer = Depends(get_issuer),
) -> Response:
    """Revoke one of the caller's own API keys. Terminal.

    Raises:
        NotFound 404: Key missing or owned by another user (stealth)
    """
    issuer.revoke(key_id, owner_user_id=auth.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/me", response_model=AuthContextResponse)
def read_auth_context(auth: AuthContext = Depends(require_auth_context)) -> AuthContextResponse:
    """Return the authorization context resolved from the bearer token."""
    return AuthContextResponse(
        user_id=auth.user_id,
        credential_id=auth.credential_id,
        subscription_status=auth.subscription_status,
        subscription_tier=auth.subscription_tier,
        long_lived=auth.long_lived,
    )
