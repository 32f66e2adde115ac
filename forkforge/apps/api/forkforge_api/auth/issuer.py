"""Credential issuance and revocation.

SECURITY:
- Raw secret exists only in the returned IssuedCredential (display-once)
- Long-lived uniqueness is enforced by the store (partial unique index);
  a violation surfaces as Conflict and nothing is overwritten
"""

import logging
import uuid
from contextlib import nullcontext
from datetime import datetime, timezone
from typing import Callable, Optional

from forkforge_api.auth.token_codec import (
    LIVE_PREFIX,
    digest_secret,
    generate_secret,
    secret_last4,
)
from forkforge_api.errors import InvalidInput, NotFound
from forkforge_api.stores.base import CredentialRecord, IssuedCredential, UnitOfWork

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CredentialIssuer:
    """Mints and revokes bearer credentials.

    Both operations either join a caller-supplied UnitOfWork (the caller
    commits) or open and commit their own.
    """

    def __init__(
        self,
        uow_factory: Callable[[], UnitOfWork],
        clock: Clock = utcnow,
        prefix: str = LIVE_PREFIX,
    ):
        self._uow_factory = uow_factory
        self._clock = clock
        self._prefix = prefix

    def issue(
        self,
        user_id: str,
        label: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> IssuedCredential:
        """Issue a new credential for an existing user.

        Args:
            user_id: Owner of the credential
            label: Optional display label
            expires_at: Expiry instant; None issues a long-lived credential
            uow: Enclosing unit of work to join (not committed here)

        Returns:
            IssuedCredential carrying the raw secret (only copy)

        Raises:
            NotFound: If the user does not exist
            InvalidInput: If expires_at is not in the future
            Conflict: If the user already holds a long-lived credential
        """
        now = self._clock()
        if expires_at is not None:
            if expires_at.tzinfo is None:
                raise InvalidInput("expires_at must be timezone-aware")
            if expires_at <= now:
                raise InvalidInput("expires_at must be in the future")

        owns_uow = uow is None
        with (self._uow_factory() if owns_uow else nullcontext(uow)) as tx:
            if tx.users.get(user_id) is None:
                raise NotFound(f"User {user_id} not found")

            secret = generate_secret(self._prefix)
            record = CredentialRecord(
                id=str(uuid.uuid4()),
                user_id=user_id,
                secret_digest=digest_secret(secret),
                label=label,
                expires_at=expires_at,
                last_used_at=None,
                created_at=now,
            )
            tx.credentials.insert(record)
            if owns_uow:
                tx.commit()

        logger.info(
            "Credential issued",
            extra={
                "event": "credential.issued",
                "credential_id": record.id,
                "owner_user_id": user_id,
                "long_lived": expires_at is None,
                "last4": secret_last4(secret),
            },
        )

        return IssuedCredential(
            secret=secret,
            credential_id=record.id,
            user_id=user_id,
            label=label,
            expires_at=expires_at,
            created_at=now,
        )

    def revoke(
        self,
        credential_id: str,
        owner_user_id: Optional[str] = None,
        uow: Optional[UnitOfWork] = None,
    ) -> None:
        """Delete a credential. Terminal.

        Raises:
            NotFound: If the credential does not exist, or is not owned by
                owner_user_id when given (stealth: no distinction)
        """
        owns_uow = uow is None
        with (self._uow_factory() if owns_uow else nullcontext(uow)) as tx:
            record = tx.credentials.get(credential_id)
            if record is None or (
                owner_user_id is not None and record.user_id != owner_user_id
            ):
                raise NotFound("Credential not found")
            tx.credentials.delete(credential_id)
            if owns_uow:
                tx.commit()

        logger.info(
            "Credential revoked",
            extra={
                "event": "credential.revoked",
                "revoked_credential_id": credential_id,
                "owner_user_id": record.user_id,
            },
        )
