"""Persistence contracts and their SQL / in-memory implementations."""

from forkforge_api.stores.base import (
    CredentialRecord,
    CredentialStore,
    IssuedCredential,
    ProcessedEventStore,
    UnitOfWork,
    UserRecord,
    UserStore,
)

__all__ = [
    "CredentialRecord",
    "CredentialStore",
    "IssuedCredential",
    "ProcessedEventStore",
    "UnitOfWork",
    "UserRecord",
    "UserStore",
]
