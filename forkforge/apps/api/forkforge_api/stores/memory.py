"""In-memory stores for tests and local tooling.

Honours the same uniqueness constraints as the SQL stores. A single lock
guards the shared tables and is held only around dict mutations, never
across caller code. Each unit of work journals its writes and undoes them
on rollback, skipping rows that another unit of work has since rewritten.

Isolation is weaker than the SQL stores: writes are visible to other units
of work before commit (dirty reads), so a reader may act on a row that is
later rolled back. This is enough to model constraint races (the first
writer wins, later writers see Conflict / False), which is what the tests
need; it is not a model of SQL transaction isolation.
"""

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from forkforge_api.errors import Conflict, NotFound
from forkforge_api.stores.base import CredentialRecord, UserRecord


class MemoryDatabase:
    """Shared tables. One instance plays the role of one database."""

    def __init__(self):
        self.lock = threading.RLock()
        self.users: dict[str, UserRecord] = {}
        self.credentials: dict[str, CredentialRecord] = {}
        self.events: dict[str, datetime] = {}

    def unit_of_work(self) -> "MemoryUnitOfWork":
        return MemoryUnitOfWork(self)


_MISSING = object()


class _Journal:
    """Undo log for one unit of work.

    Each entry keeps the pre-image and the value this unit of work wrote.
    Rollback restores the pre-image only while the row still holds that
    written value, so a later writer's change is never clobbered.
    """

    def __init__(self):
        self.undo: list[tuple[dict, str, object, object]] = []

    def put(self, table: dict, key: str, value) -> None:
        self.undo.append((table, key, table.get(key, _MISSING), value))
        table[key] = value

    def remove(self, table: dict, key: str) -> None:
        self.undo.append((table, key, table.get(key, _MISSING), _MISSING))
        table.pop(key, None)

    def rollback(self) -> None:
        while self.undo:
            table, key, previous, written = self.undo.pop()
            if table.get(key, _MISSING) is not written:
                continue
            if previous is _MISSING:
                table.pop(key, None)
            else:
                table[key] = previous

    def clear(self) -> None:
        self.undo.clear()


class MemoryUserStore:
    def __init__(self, db: MemoryDatabase, journal: _Journal):
        self._db = db
        self._journal = journal

    def get(self, user_id: str) -> Optional[UserRecord]:
        with self._db.lock:
            return self._db.users.get(user_id)

    def find_by_billing_ref(self, billing_ref: str) -> Optional[UserRecord]:
        with self._db.lock:
            return self._find("billing_ref", billing_ref)

    def find_by_external_identity(self, external_identity_id: str) -> Optional[UserRecord]:
        with self._db.lock:
            return self._find("external_identity_id", external_identity_id)

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
        with self._db.lock:
            current = self._db.users.get(user_id)
            if current is None:
                raise NotFound(f"User {user_id} not found")
            updated = current
            if status is not None:
                updated = replace(updated, subscription_status=status)
            if tier is not None:
                updated = replace(updated, subscription_tier=tier)
            self._journal.put(self._db.users, user_id, updated)
            return updated

    def _find(self, key: str, value: str) -> Optional[UserRecord]:
        for user in self._db.users.values():
            if getattr(user, key) == value:
                return user
        return None

    def _upsert(self, key: str, value: str) -> UserRecord:
        with self._db.lock:
            existing = self._find(key, value)
            if existing is not None:
                return existing
            fields = {
                "external_identity_id": None,
                "billing_ref": None,
                key: value,
            }
            user = UserRecord(
                id=str(uuid.uuid4()),
                subscription_status="inactive",
                subscription_tier="free",
                created_at=datetime.now(timezone.utc),
                **fields,
            )
            self._journal.put(self._db.users, user.id, user)
            return user


class MemoryCredentialStore:
    def __init__(self, db: MemoryDatabase, journal: _Journal):
        self._db = db
        self._journal = journal

    def insert(self, record: CredentialRecord) -> CredentialRecord:
        with self._db.lock:
            for existing in self._db.credentials.values():
                if existing.id == record.id:
                    raise Conflict("Uniqueness constraint violated (credentials.insert)")
                if existing.secret_digest == record.secret_digest:
                    raise Conflict("Uniqueness constraint violated (credentials.insert)")
                if (
                    record.expires_at is None
                    and existing.expires_at is None
                    and existing.user_id == record.user_id
                ):
                    raise Conflict("Uniqueness constraint violated (credentials.insert)")
            self._journal.put(self._db.credentials, record.id, record)
            return record

    def find_by_digest(self, secret_digest: str) -> Optional[CredentialRecord]:
        with self._db.lock:
            for record in self._db.credentials.values():
                if record.secret_digest == secret_digest:
                    return record
            return None

    def get(self, credential_id: str) -> Optional[CredentialRecord]:
        with self._db.lock:
            return self._db.credentials.get(credential_id)

    def touch_last_used(self, credential_id: str, at: datetime) -> None:
        with self._db.lock:
            current = self._db.credentials.get(credential_id)
            if current is None:
                return
            self._journal.put(
                self._db.credentials, credential_id, replace(current, last_used_at=at)
            )

    def delete(self, credential_id: str) -> bool:
        with self._db.lock:
            if credential_id not in self._db.credentials:
                return False
            self._journal.remove(self._db.credentials, credential_id)
            return True

    def list_for_user(self, user_id: str) -> list[CredentialRecord]:
        with self._db.lock:
            rows = [r for r in self._db.credentials.values() if r.user_id == user_id]
        return sorted(rows, key=lambda r: r.created_at)


class MemoryProcessedEventStore:
    def __init__(self, db: MemoryDatabase, journal: _Journal):
        self._db = db
        self._journal = journal

    def try_insert(self, event_id: str, at: datetime) -> bool:
        with self._db.lock:
            if event_id in self._db.events:
                return False
            self._journal.put(self._db.events, event_id, at)
            return True

    def exists(self, event_id: str) -> bool:
        with self._db.lock:
            return event_id in self._db.events


class MemoryUnitOfWork:
    def __init__(self, db: MemoryDatabase):
        self._db = db
        self._journal = _Journal()
        self.users = MemoryUserStore(db, self._journal)
        self.credentials = MemoryCredentialStore(db, self._journal)
        self.events = MemoryProcessedEventStore(db, self._journal)

    def __enter__(self) -> "MemoryUnitOfWork":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.rollback()

    def commit(self) -> None:
        with self._db.lock:
            self._journal.clear()

    def rollback(self) -> None:
        with self._db.lock:
            self._journal.rollback()

