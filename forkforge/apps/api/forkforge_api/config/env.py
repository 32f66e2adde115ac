"""Environment variable resolution utilities.

Canonical env names + fail-fast validation. Every setting is read at call
time so tests can monkeypatch the environment without reloading modules.
"""

import os
from typing import Optional

DEFAULT_DEV_DATABASE_URL = "sqlite:///./forkforge.db"


def get_forkforge_env() -> str:
    """Get environment name.

    Priority:
    1. FORKFORGE_ENV (canonical)
    2. FORKFORGE_PROFILE (legacy CLI compat)
    3. Default: "local"

    Returns:
        Environment name (lowercase)
    """
    return (
        os.getenv("FORKFORGE_ENV")
        or os.getenv("FORKFORGE_PROFILE")
        or "local"
    ).lower()


def is_production_env() -> bool:
    """True when FORKFORGE_ENV is prod/production."""
    return get_forkforge_env() in {"prod", "production"}


def get_database_url() -> str:
    """Get database URL.

    Production fail-fast: DATABASE_URL is mandatory in prod/production.
    Development falls back to a local SQLite file.

    Raises:
        RuntimeError: If DATABASE_URL is missing in production
    """
    database_url = os.getenv("DATABASE_URL")
    if database_url:
        return database_url

    if is_production_env():
        raise RuntimeError(
            "DATABASE_URL environment variable is required in production "
            "(FORKFORGE_ENV=prod/production). Check deployment configuration."
        )
    return DEFAULT_DEV_DATABASE_URL


def get_token_pepper(version: int = 1) -> str:
    """Get pepper by version for credential digests.

    Environment Variables:
    - TOKEN_PEPPER_V1: Required for version 1 (default)
    - TOKEN_PEPPER_V2: Optional for version 2 (future rotation)

    Raises:
        ValueError: If pepper not found for version
    """
    env_key = f"TOKEN_PEPPER_V{version}"
    pepper = os.getenv(env_key)

    if not pepper:
        raise ValueError(
            f"{env_key} environment variable is required for credential hashing. "
            f"Generate with: python -c 'import secrets; print(secrets.token_urlsafe(32))'"
        )

    return pepper


def get_webhook_secret() -> str:
    """Get the payment processor webhook signing secret.

    Required: STRIPE_WEBHOOK_SECRET

    Raises:
        ValueError: If STRIPE_WEBHOOK_SECRET is not set
    """
    secret = os.getenv("STRIPE_WEBHOOK_SECRET")
    if not secret:
        raise ValueError(
            "STRIPE_WEBHOOK_SECRET is required. "
            "Set it to the endpoint signing secret (whsec_...) from the processor dashboard."
        )
    return secret


def get_webhook_tolerance_seconds() -> int:
    """Acceptance window for webhook timestamps (default 300s)."""
    return _get_int("WEBHOOK_TOLERANCE_SECONDS", 300, minimum=1)


def get_admin_token() -> str:
    """Get operator token for key issuance endpoints.

    Raises:
        RuntimeError: If ADMIN_TOKEN not set
    """
    token = os.getenv("ADMIN_TOKEN")
    if not token:
        raise RuntimeError(
            "ADMIN_TOKEN not set. Configure ADMIN_TOKEN environment variable."
        )
    return token


def get_db_pool_mode() -> str:
    """DB pool mode: nullpool (default) | queuepool."""
    mode = (os.getenv("FORKFORGE_DB_POOL") or "").strip().lower() or "nullpool"
    if mode not in {"nullpool", "queuepool"}:
        raise ValueError(
            f"FORKFORGE_DB_POOL must be 'nullpool' or 'queuepool', got {mode!r}"
        )
    return mode


def get_db_statement_timeout_ms() -> int:
    """Upper bound for a single store statement (default 5000ms)."""
    return _get_int("FORKFORGE_DB_STATEMENT_TIMEOUT_MS", 5000, minimum=1)


def get_db_connect_timeout_s() -> int:
    """Upper bound for acquiring a store connection (default 10s)."""
    return _get_int("FORKFORGE_DB_CONNECT_TIMEOUT_S", 10, minimum=1)


def get_provisioned_keys_file() -> Optional[str]:
    """Optional file path for the operator key-delivery sink."""
    return os.getenv("PROVISIONED_KEYS_FILE") or None


def _get_int(env_key: str, default: int, *, minimum: int) -> int:
    raw = os.getenv(env_key)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{env_key} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{env_key} must be >= {minimum}, got {value}")
    return value
