"""Bearer credential codec.

Opaque secret generation, peppered digest and transport-format validation.

SECURITY:
- Secrets are HMAC-SHA256 hashed with a server PEPPER
- Raw secrets are NEVER stored; only the digest is persisted
- Display-once: raw secrets are returned only at issuance
"""

import base64
import hashlib
import hmac
import logging
import re
import secrets

from forkforge_api.config.env import get_token_pepper
from forkforge_api.errors import InvalidInput

logger = logging.getLogger(__name__)

LIVE_PREFIX = "ff_live"
TEST_PREFIX = "ff_test"
ALLOWED_PREFIXES = (LIVE_PREFIX, TEST_PREFIX)

SECRET_BYTES = 32
# base64url(32 bytes) without padding
ENCODED_RANDOM_LEN = 43
DIGEST_LEN = 43

_SECRET_RE = re.compile(
    r"^(?:ff_live|ff_test)_[A-Za-z0-9_-]{%d}$" % ENCODED_RANDOM_LEN
)


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def generate_secret(prefix: str = LIVE_PREFIX) -> str:
    """Generate a new opaque bearer secret.

    Format: {prefix}_{base64url(32_random_bytes)}
    Example: ff_live_Kx7jQ2mN9pL1Rz8wV3yU4tS5aB6cD7eF8gH9iJ0kL1m

    Raises:
        ValueError: If prefix is not ff_live / ff_test
    """
    if prefix not in ALLOWED_PREFIXES:
        raise ValueError(f"Unsupported secret prefix: {prefix!r}")

    # CSPRNG failure propagates; there is no weaker fallback.
    random_part = _b64url(secrets.token_bytes(SECRET_BYTES))
    return f"{prefix}_{random_part}"


def digest_secret(secret: str, pepper_version: int = 1) -> str:
    """Derive the stored digest of a raw secret.

    HMAC-SHA256 keyed with the server pepper, base64url without padding
    (always 43 characters). Deterministic for a given pepper.

    Raises:
        ValueError: If the pepper is not configured
    """
    pepper = get_token_pepper(pepper_version)
    mac = hmac.new(
        key=pepper.encode("utf-8"),
        msg=secret.encode("utf-8"),
        digestmod=hashlib.sha256,
    ).digest()
    return _b64url(mac)


def parse_bearer_secret(raw: str) -> str:
    """Validate the transport encoding of a presented secret.

    Accepts surrounding whitespace only. Anything else that does not look
    like ``ff_live_<43 base64url chars>`` or ``ff_test_<...>`` is rejected.

    Raises:
        InvalidInput: If the secret is malformed
    """
    if not isinstance(raw, str):
        raise InvalidInput("Malformed credential")
    candidate = raw.strip()
    if not _SECRET_RE.match(candidate):
        raise InvalidInput("Malformed credential")
    return candidate


def secret_last4(secret: str) -> str:
    """Last 4 characters, safe for logs and display."""
    return secret[-4:]
