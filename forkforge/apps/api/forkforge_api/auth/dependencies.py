"""FastAPI dependencies for bearer and operator authentication.

SECURITY:
- Tokens must be in Authorization: Bearer <token> header
- Uniform 401 responses: malformed, unknown and expired tokens are
  indistinguishable to the caller
- last_used_at is updated after the response (background task)
- Operator endpoints compare X-Admin-Token in constant time
"""

import logging
import secrets
from typing import Callable, Optional

from fastapi import BackgroundTasks, Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from starlette.concurrency import run_in_threadpool

from forkforge_api.auth.issuer import Clock, CredentialIssuer, utcnow
from forkforge_api.auth.verifier import GENERIC_AUTH_FAILURE, AuthContext, AuthVerifier
from forkforge_api.config.env import get_admin_token
from forkforge_api.context import credential_id_var, user_id_var
from forkforge_api.db.session import get_uow_factory
from forkforge_api.errors import Internal, InvalidInput, Unauthenticated
from forkforge_api.stores.base import UnitOfWork

logger = logging.getLogger(__name__)

# HTTPBearer scheme for OpenAPI docs
token_security = HTTPBearer(auto_error=False, description="API key (opaque Bearer)")


def get_clock() -> Clock:
    """Time source for issuance and expiry checks (overridable in tests)."""
    return utcnow


def get_issuer(
    uow_factory: Callable[[], UnitOfWork] = Depends(get_uow_factory),
    clock: Clock = Depends(get_clock),
) -> CredentialIssuer:
    return CredentialIssuer(uow_factory, clock=clock)


def get_verifier(
    uow_factory: Callable[[], UnitOfWork] = Depends(get_uow_factory),
    clock: Clock = Depends(get_clock),
) -> AuthVerifier:
    return AuthVerifier(uow_factory, clock=clock)


async def require_auth_context(
    background_tasks: BackgroundTasks,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(token_security),
    verifier: AuthVerifier = Depends(get_verifier),
) -> AuthContext:
    """Resolve the bearer token into an AuthContext.

    Raises:
        Unauthenticated: Missing, malformed, unknown or expired token
    """
    if credentials is None:
        raise Unauthenticated(GENERIC_AUTH_FAILURE)

    try:
        ctx = await run_in_threadpool(verifier.verify, credentials.credentials)
    except InvalidInput:
        logger.warning(
            "Credential verification failed",
            extra={"event": "credential.verify.failed", "reason": "malformed"},
        )
        raise Unauthenticated(GENERIC_AUTH_FAILURE) from None

    user_id_var.set(ctx.user_id)
    credential_id_var.set(ctx.credential_id)

    # Off the critical path; runs after the response is sent
    background_tasks.add_task(verifier.record_use, ctx.credential_id)
    return ctx


def require_admin_token(x_admin_token: Optional[str] = Header(None)) -> None:
    """Verify X-Admin-Token using constant-time comparison.

    Raises:
        Unauthenticated: If the header is missing or wrong
        Internal: If ADMIN_TOKEN is not configured
    """
    try:
        expected_token = get_admin_token()
    except RuntimeError as e:
        logger.error(f"Admin token not configured: {e}")
        raise Internal("Admin token not configured on server") from None

    if not x_admin_token or not secrets.compare_digest(
        x_admin_token.encode("utf-8"), expected_token.encode("utf-8")
    ):
        logger.warning(
            "Invalid admin token attempt",
            extra={"event": "admin.auth_failed"},
        )
        raise Unauthenticated("Invalid X-Admin-Token", code="invalid_admin_token")
