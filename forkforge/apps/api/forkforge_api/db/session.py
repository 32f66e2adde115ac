"""Database session management.

The engine is built lazily on first use so that importing the app never
requires a reachable database (tests override the dependencies below).
"""

from functools import lru_cache
from typing import Callable, Generator

from sqlalchemy.orm import Session, sessionmaker

from forkforge_api.db.engine import build_engine, build_sessionmaker
from forkforge_api.stores.base import UnitOfWork
from forkforge_api.stores.sql import SqlUnitOfWork


@lru_cache(maxsize=1)
def get_sessionmaker() -> sessionmaker[Session]:
    """Process-wide session factory bound to the configured engine."""
    return build_sessionmaker(build_engine())


def get_db() -> Generator[Session, None, None]:
    """
    Get database session.

    Yields:
        Session: SQLAlchemy session
    """
    db = get_sessionmaker()()
    try:
        yield db
    finally:
        db.close()


def get_uow_factory() -> Callable[[], UnitOfWork]:
    """FastAPI dependency: factory producing one UnitOfWork per transaction."""
    factory = get_sessionmaker()
    return lambda: SqlUnitOfWork(factory)
