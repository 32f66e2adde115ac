"""Store contracts.

Components depend on these protocols, never on a concrete backend. Both
``stores.sql`` (SQLAlchemy) and ``stores.memory`` (test double) enforce the
same constraints at the store level:

- users: unique billing_ref, unique external_identity_id
- credentials: unique secret_digest; at most one row per user with
  expires_at NULL
- processed_events: unique id

Constraint violations surface as ``errors.Conflict``; backend outages as
``errors.ExternalService``.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol


@dataclass(frozen=True)
class UserRecord:
    id: str
    external_identity_id: Optional[str]
    billing_ref: Optional[str]
    subscription_status: str
    subscription_tier: str
    created_at: datetime


@dataclass(frozen=True)
class CredentialRecord:
    id: str
    user_id: str
    secret_digest: str
    label: Optional[str]
    expires_at: Optional[datetime]
    last_used_at: Optional[datetime]
    created_at: datetime

    @property
    def long_lived(self) -> bool:
        return self.expires_at is None


@dataclass(frozen=True)
class IssuedCredential:
    """Result of issuance. ``secret`` is the only copy of the raw secret."""

    secret: str
    credential_id: str
    user_id: str
    label: Optional[str]
    expires_at: Optional[datetime]
    created_at: datetime

    def __repr__(self) -> str:
        # Keep the raw secret out of reprs and tracebacks
        return (
            f"IssuedCredential(credential_id={self.credential_id!r}, "
            f"user_id={self.user_id!r}, expires_at={self.expires_at!r})"
        )


class UserStore(Protocol):
    def get(self, user_id: str) -> Optional[UserRecord]: ...

    def find_by_billing_ref(self, billing_ref: str) -> Optional[UserRecord]: ...

    def find_by_external_identity(
        self, external_identity_id: str
    ) -> Optional[UserRecord]: ...

    def upsert_by_billing_ref(self, billing_ref: str) -> UserRecord:
        """Atomic insert-or-get keyed by billing_ref."""
        ...

    def upsert_by_external_identity(self, external_identity_id: str) -> UserRecord:
        """Atomic insert-or-get keyed by external_identity_id."""
        ...

    def update_subscription(
        self,
        user_id: str,
        *,
        status: Optional[str] = None,
        tier: Optional[str] = None,
    ) -> UserRecord: ...


class CredentialStore(Protocol):
    def insert(self, record: CredentialRecord) -> CredentialRecord:
        """Single constrained insert. Raises Conflict on any uniqueness violation."""
        ...

    def find_by_digest(self, secret_digest: str) -> Optional[CredentialRecord]: ...

    def get(self, credential_id: str) -> Optional[CredentialRecord]: ...

    def touch_last_used(self, credential_id: str, at: datetime) -> None: ...

    def delete(self, credential_id: str) -> bool:
        """Remove the row. Returns False if it did not exist."""
        ...

    def list_for_user(self, user_id: str) -> list[CredentialRecord]: ...


class ProcessedEventStore(Protocol):
    def try_insert(self, event_id: str, at: datetime) -> bool:
        """INSERT ... ON CONFLICT DO NOTHING. True only for the first writer."""
        ...

    def exists(self, event_id: str) -> bool: ...


class UnitOfWork(Protocol):
    """One transaction spanning all three stores.

    Used as a context manager; anything not committed is rolled back on exit.
    """

    users: UserStore
    credentials: CredentialStore
    events: ProcessedEventStore

    def __enter__(self) -> "UnitOfWork": ...

    def __exit__(self, exc_type, exc, tb) -> None: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...
