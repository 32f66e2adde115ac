"""Bearer credential verification.

SECURITY:
- Lookup by peppered digest; raw secrets are never compared or stored
- Stored digest re-checked with hmac.compare_digest
- Unknown and expired credentials fail identically (no information leakage)
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Callable

from forkforge_api.auth.issuer import Clock, utcnow
from forkforge_api.auth.token_codec import digest_secret, parse_bearer_secret
from forkforge_api.errors import ExternalService, NotFound, Unauthenticated
from forkforge_api.stores.base import UnitOfWork

logger = logging.getLogger(__name__)

GENERIC_AUTH_FAILURE = "Invalid or expired token"


@dataclass(frozen=True)
class AuthContext:
    """Authorization context injected into authenticated handlers."""

    user_id: str
    credential_id: str
    subscription_status: str
    subscription_tier: str
    long_lived: bool


class AuthVerifier:
    def __init__(self, uow_factory: Callable[[], UnitOfWork], clock: Clock = utcnow):
        self._uow_factory = uow_factory
        self._clock = clock

    def verify(self, presented_token: str) -> AuthContext:
        """Resolve a presented bearer secret to its owner.

        Raises:
            InvalidInput: If the secret is malformed
            Unauthenticated: If it is unknown or expired
        """
        secret = parse_bearer_secret(presented_token)
        digest = digest_secret(secret)

        with self._uow_factory() as uow:
            record = uow.credentials.find_by_digest(digest)
            if record is None or not hmac.compare_digest(record.secret_digest, digest):
                logger.warning(
                    "Credential verification failed",
                    extra={"event": "credential.verify.failed", "reason": "unknown"},
                )
                raise Unauthenticated(GENERIC_AUTH_FAILURE)

            if record.expires_at is not None and record.expires_at <= self._clock():
                logger.warning(
                    "Credential verification failed",
                    extra={
                        "event": "credential.verify.failed",
                        "reason": "expired",
                        "credential_id": record.id,
                    },
                )
                raise Unauthenticated(GENERIC_AUTH_FAILURE)

            user = uow.users.get(record.user_id)
            if user is None:
                # Orphaned credential: treat as unknown
                raise Unauthenticated(GENERIC_AUTH_FAILURE)

        return AuthContext(
            user_id=user.id,
            credential_id=record.id,
            subscription_status=user.subscription_status,
            subscription_tier=user.subscription_tier,
            long_lived=record.long_lived,
        )

    def record_use(self, credential_id: str) -> None:
        """Update last_used_at. Best effort; failures are logged only.

        Runs after the response (FastAPI background task), so there is no
        caller left to receive an error.
        """
        try:
            with self._uow_factory() as uow:
                uow.credentials.touch_last_used(credential_id, self._clock())
                uow.commit()
        except (ExternalService, NotFound) as exc:
            logger.warning(
                "Failed to record credential use",
                extra={
                    "event": "credential.touch.failed",
                    "credential_id": credential_id,
                    "error_type": type(exc).__name__,
                },
            )
