"""Payment webhook signature verification.

Header format (Stripe-compatible):
    Stripe-Signature: t=<unix seconds>,v1=<hex>[,v1=<hex>...]

Signed payload is ``f"{t}."`` followed by the raw request body bytes,
HMAC-SHA256 keyed with the endpoint signing secret. Verification runs on
the exact bytes received; JSON parsing happens only after it succeeds.
Several v1 entries appear while the processor rolls the signing secret.
"""

import hashlib
import hmac
import logging
import time
from typing import Optional

from forkforge_api.errors import InvalidSignature

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_SECONDS = 300
SIGNATURE_SCHEME = "v1"


def _expected_signature(raw_body: bytes, timestamp: int, shared_secret: str) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + raw_body
    return hmac.new(
        shared_secret.encode("utf-8"), signed_payload, hashlib.sha256
    ).hexdigest()


def _parse_header(signature_header: str) -> tuple[int, list[str]]:
    timestamp: Optional[int] = None
    candidates: list[str] = []

    for item in signature_header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError:
                raise InvalidSignature("Malformed signature timestamp") from None
        elif key == SIGNATURE_SCHEME and value:
            candidates.append(value)

    if timestamp is None:
        raise InvalidSignature("Signature header missing timestamp")
    if not candidates:
        raise InvalidSignature("Signature header missing v1 signature")
    return timestamp, candidates


def verify_signature(
    raw_body: bytes,
    signature_header: Optional[str],
    shared_secret: str,
    *,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[float] = None,
) -> int:
    """Verify a webhook delivery.

    Args:
        raw_body: Request body exactly as received
        signature_header: Value of the Stripe-Signature header
        shared_secret: Endpoint signing secret
        tolerance: Max allowed |now - t| in seconds
        now: Current unix time (injectable for tests)

    Returns:
        The verified signature timestamp

    Raises:
        InvalidSignature: Missing/malformed header, no matching signature,
            or timestamp outside tolerance
    """
    if not signature_header:
        raise InvalidSignature("Missing signature header")
    if not shared_secret:
        raise InvalidSignature("Webhook signing secret not configured")

    timestamp, candidates = _parse_header(signature_header)
    expected = _expected_signature(raw_body, timestamp, shared_secret).encode("ascii")

    # Check every candidate; no early exit on the first match.
    # Compared as bytes: header values may carry non-ASCII characters.
    matched = False
    for candidate in candidates:
        if hmac.compare_digest(expected, candidate.encode("utf-8", "surrogateescape")):
            matched = True
    if not matched:
        raise InvalidSignature("No signature matches the payload")

    current = time.time() if now is None else now
    if abs(current - timestamp) > tolerance:
        logger.warning(
            "Webhook timestamp outside tolerance",
            extra={
                "event": "webhook.signature.stale",
                "skew_seconds": int(current - timestamp),
                "tolerance": tolerance,
            },
        )
        raise InvalidSignature("Timestamp outside the tolerance zone")

    return timestamp


def compute_signature_header(
    raw_body: bytes,
    shared_secret: str,
    timestamp: Optional[int] = None,
) -> str:
    """Build a valid signature header for ``raw_body``.

    Used by tests and local tooling to replay events.
    """
    ts = int(time.time()) if timestamp is None else timestamp
    return f"t={ts},{SIGNATURE_SCHEME}={_expected_signature(raw_body, ts, shared_secret)}"
