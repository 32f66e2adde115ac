"""SQLAlchemy-backed stores.

Every write is a single constrained statement so that concurrent requests
are ordered by the database, not by application locks:

- processed event dedup: INSERT ... ON CONFLICT (id) DO NOTHING RETURNING id
- user upsert: INSERT ... ON CONFLICT (<key>) DO NOTHING, then SELECT
- credential issue: plain INSERT; unique / partial-unique violations
  surface as IntegrityError and are translated to Conflict

Storage exceptions never leave this module untranslated.
"""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session

from forkforge_api.db.models import Credential, ProcessedEvent, User
from forkforge_api.errors import Conflict, ExternalService, NotFound
from forkforge_api.stores.base import CredentialRecord, UserRecord

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    """Translate SQLAlchemy/driver exceptions into domain errors."""
    try:
        yield
    except IntegrityError as exc:
        logger.info(
            "Store constraint violation",
            extra={"event": "store.conflict", "operation": operation},
        )
        raise Conflict(f"Uniqueness constraint violated ({operation})") from exc
    except (DBAPIError, PoolTimeoutError) as exc:
        logger.error(
            "Store unavailable",
            extra={
                "event": "store.unavailable",
                "operation": operation,
                "error_type": type(exc).__name__,
            },
        )
        raise ExternalService(f"Store unavailable ({operation})") from exc


def _dialect_insert(session: Session):
    """Return the dialect-specific insert() that supports ON CONFLICT."""
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return pg_insert
    if dialect == "sqlite":
        return sqlite_insert
    raise RuntimeError(f"Unsupported database dialect for stores: {dialect}")


def _user_record(row: User) -> UserRecord:
    return UserRecord(
        id=row.id,
        external_identity_id=row.external_identity_id,
        billing_ref=row.billing_ref,
        subscription_status=row.subscription_status,
        subscription_tier=row.subscription_tier,
        created_at=_aware(row.created_at),
    )


def _credential_record(row: Credential) -> CredentialRecord:
    return CredentialRecord(
        id=row.id,
        user_id=row.user_id,
        secret_digest=row.secret_digest,
        label=row.label,
        expires_at=_aware(row.expires_at),
        last_used_at=_aware(row.last_used_at),
        created_at=_aware(row.created_at),
    )


class SqlUserStore:
    def __init__(self, session: Session):
        self._session = session

    def get(self, user_id: str) -> Optional[UserRecord]:
        with _store_errors("users.get"):
            row = self._session.get(User, user_id)
        return _user_record(row) if row is not None else None

    def find_by_billing_ref(self, billing_ref: str) -> Optional[UserRecord]:
        return self._find_one(User.billing_ref == billing_ref, "users.find_by_billing_ref")

    def find_by_external_identity(self, external_identity_id: str) -> Optional[UserRecord]:
        return self._find_one(
            User.external_identity_id == external_identity_id,
            "users.find_by_external_identity",
        )

    def upsert_by_billing_ref(self, billing_ref: str) -> UserRecord:
        return self._upsert("billing_ref", billing_ref)

    def upsert_by_external_identity(self, external_identity_id: str) -> UserRecord:
        return self._upsert("external_identity_id", external_identity_id)

    def update_subscription(
        self,
        user_id: str,
        *,
        status: Optional[str] = None,
        tier: Optional[str] = None,
    ) -> UserRecord:
        with _store_errors("users.update_subscription"):
            row = self._session.get(User, user_id)
            if row is None:
                raise NotFound(f"User {user_id} not found")
            if status is not None:
                row.subscription_status = status
            if tier is not None:
                row.subscription_tier = tier
            self._session.flush()
        return _user_record(row)

    def _find_one(self, clause, operation: str) -> Optional[UserRecord]:
        with _store_errors(operation):
            row = self._session.execute(select(User).where(clause)).scalar_one_or_none()
        return _user_record(row) if row is not None else None

    def _upsert(self, key: str, value: str) -> UserRecord:
        insert = _dialect_insert(self._session)
        stmt = (
            insert(User)
            .values(
                id=str(uuid.uuid4()),
                subscription_status="inactive",
                subscription_tier="free",
                created_at=datetime.now(timezone.utc),
                **{key: value},
            )
            .on_conflict_do_nothing(index_elements=[key])
        )
        with _store_errors(f"users.upsert_by_{key}"):
            self._session.execute(stmt)
            row = self._session.execute(
                select(User).where(getattr(User, key) == value)
            ).scalar_one()
        return _user_record(row)


class SqlCredentialStore:
    def __init__(self, session: Session):
        self._session = session

    def insert(self, record: CredentialRecord) -> CredentialRecord:
        row = Credential(
            id=record.id,
            user_id=record.user_id,
            secret_digest=record.secret_digest,
            label=record.label,
            expires_at=record.expires_at,
            last_used_at=record.last_used_at,
            created_at=record.created_at,
        )
        with _store_errors("credentials.insert"):
            self._session.add(row)
            self._session.flush()
        return record

    def find_by_digest(self, secret_digest: str) -> Optional[CredentialRecord]:
        with _store_errors("credentials.find_by_digest"):
            row = self._session.execute(
                select(Credential).where(Credential.secret_digest == secret_digest)
            ).scalar_one_or_none()
        return _credential_record(row) if row is not None else None

    def get(self, credential_id: str) -> Optional[CredentialRecord]:
        with _store_errors("credentials.get"):
            row = self._session.get(Credential, credential_id)
        return _credential_record(row) if row is not None else None

    def touch_last_used(self, credential_id: str, at: datetime) -> None:
        with _store_errors("credentials.touch_last_used"):
            self._session.execute(
                update(Credential)
                .where(Credential.id == credential_id)
                .values(last_used_at=at)
            )

    def delete(self, credential_id: str) -> bool:
        with _store_errors("credentials.delete"):
            result = self._session.execute(
                delete(Credential).where(Credential.id == credential_id)
            )
        return result.rowcount > 0

    def list_for_user(self, user_id: str) -> list[CredentialRecord]:
        with _store_errors("credentials.list_for_user"):
            rows = self._session.execute(
                select(Credential)
                .where(Credential.user_id == user_id)
                .order_by(Credential.created_at)
            ).scalars().all()
        return [_credential_record(row) for row in rows]


class SqlProcessedEventStore:
    def __init__(self, session: Session):
        self._session = session

    def try_insert(self, event_id: str, at: datetime) -> bool:
        """Atomic dedup gate.

        Returns True if this call inserted the row (first writer), False if
        the event id already exists (duplicate or concurrent delivery).
        """
        insert = _dialect_insert(self._session)
        stmt = (
            insert(ProcessedEvent)
            .values(id=event_id, created_at=at)
            .on_conflict_do_nothing(index_elements=["id"])
            .returning(ProcessedEvent.id)
        )
        with _store_errors("events.try_insert"):
            inserted = self._session.execute(stmt).scalar_one_or_none()
        return inserted is not None

    def exists(self, event_id: str) -> bool:
        with _store_errors("events.exists"):
            found = self._session.execute(
                select(ProcessedEvent.id).where(ProcessedEvent.id == event_id)
            ).scalar_one_or_none()
        return found is not None


class SqlUnitOfWork:
    """One Session, one transaction across users/credentials/events.

    Exiting the context closes the session, which rolls back anything not
    committed.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory
        self.session: Optional[Session] = None

    def __enter__(self) -> "SqlUnitOfWork":
        self.session = self._session_factory()
        self.users = SqlUserStore(self.session)
        self.credentials = SqlCredentialStore(self.session)
        self.events = SqlProcessedEventStore(self.session)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        session, self.session = self.session, None
        if session is not None:
            session.close()

    def commit(self) -> None:
        with _store_errors("commit"):
            self.session.commit()

    def rollback(self) -> None:
        with _store_errors("rollback"):
            self.session.rollback()
