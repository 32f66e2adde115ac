"""Database engine builder (SSOT).

- Default pool: NullPool (client-side pooling disabled)
- ENV: FORKFORGE_DB_POOL=nullpool|queuepool (default: nullpool)
- Store latency is bounded by driver-level timeouts set on the engine:
  FORKFORGE_DB_STATEMENT_TIMEOUT_MS and FORKFORGE_DB_CONNECT_TIMEOUT_S
"""

import logging
import os
import re
from typing import Any

from sqlalchemy import Engine, NullPool, create_engine
from sqlalchemy.engine import make_url
from sqlalchemy.orm import Session, sessionmaker

from forkforge_api.config.env import (
    get_database_url,
    get_db_connect_timeout_s,
    get_db_pool_mode,
    get_db_statement_timeout_ms,
)

logger = logging.getLogger(__name__)


def _mask_password(url: str) -> str:
    """Mask password in database URL for safe logging."""
    return re.sub(r"://([^:]+):([^@]+)@", r"://\1:***@", url)


def build_connect_args(url: str) -> dict[str, Any]:
    """Driver connect_args carrying the configured timeouts.

    PostgreSQL: connect_timeout + server-side statement_timeout.
    SQLite: busy timeout; connections may cross threadpool workers.
    Other backends get no extra arguments.
    """
    backend = make_url(url).get_backend_name()
    connect_timeout_s = get_db_connect_timeout_s()

    if backend == "postgresql":
        statement_timeout_ms = get_db_statement_timeout_ms()
        return {
            "connect_timeout": connect_timeout_s,
            "options": f"-c statement_timeout={statement_timeout_ms}",
            "application_name": os.getenv("FORKFORGE_DB_APPLICATION_NAME", "forkforge-api"),
        }
    if backend == "sqlite":
        return {"timeout": connect_timeout_s, "check_same_thread": False}
    return {}


def build_engine(database_url: str | None = None) -> Engine:
    """
    Build SQLAlchemy engine.

    Args:
        database_url: Database URL. If None, resolved via config.env.get_database_url().

    Returns:
        SQLAlchemy Engine instance.

    Raises:
        RuntimeError: If DATABASE_URL is missing in production.
        ValueError: If FORKFORGE_DB_POOL or a timeout setting is invalid.

    Environment Variables:
        DATABASE_URL: Runtime connection string
        FORKFORGE_DB_POOL: Pool mode - "nullpool" (default) | "queuepool"
        FORKFORGE_DB_POOL_SIZE: QueuePool size (default: 5, only for queuepool)
        FORKFORGE_DB_MAX_OVERFLOW: QueuePool overflow (default: 10, only for queuepool)
    """
    url = database_url or get_database_url()
    connect_args = build_connect_args(url)
    pool_mode = get_db_pool_mode()

    if pool_mode == "nullpool":
        engine = create_engine(
            url,
            poolclass=NullPool,
            pool_pre_ping=True,
            connect_args=connect_args,
        )
    else:
        pool_size = int(os.getenv("FORKFORGE_DB_POOL_SIZE", "5"))
        max_overflow = int(os.getenv("FORKFORGE_DB_MAX_OVERFLOW", "10"))
        engine = create_engine(
            url,
            pool_pre_ping=True,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_timeout=get_db_connect_timeout_s(),
            connect_args=connect_args,
        )

    # DO NOT log full URL with password
    logger.debug(
        "Database engine created: pool=%s, url=%s",
        engine.pool.__class__.__name__,
        _mask_password(url),
    )

    return engine


def build_sessionmaker(engine: Engine) -> sessionmaker[Session]:
    """
    Build SQLAlchemy sessionmaker.

    Args:
        engine: SQLAlchemy Engine instance.

    Returns:
        sessionmaker instance configured with autocommit=False, autoflush=False.
    """
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)
