"""Domain error taxonomy.

Every failure that crosses a component boundary is one of these. HTTP
handlers in main.py render them as RFC 9457 Problem Details using the
class-level ``status_code``/``title``/``code``.

Store adapters translate storage exceptions at the boundary:
- uniqueness / constraint violations -> Conflict
- driver, timeout and connectivity failures -> ExternalService
Raw storage errors never leak past the stores package.
"""

from typing import Optional


class ForkForgeError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    title: str = "Internal Server Error"
    code: str = "internal_error"

    def __init__(self, detail: str = "", *, code: Optional[str] = None):
        super().__init__(detail or self.title)
        self.detail = detail or self.title
        if code is not None:
            self.code = code


class NotFound(ForkForgeError):
    status_code = 404
    title = "Not Found"
    code = "not_found"


class Unauthenticated(ForkForgeError):
    """Bad, expired or missing credential.

    The detail is deliberately generic; callers never learn whether the token
    was unknown or expired.
    """

    status_code = 401
    title = "Unauthorized"
    code = "invalid_or_expired_token"


class InvalidSignature(ForkForgeError):
    """Webhook signature or timestamp check failed. Terminal for the request."""

    status_code = 400
    title = "Invalid Webhook Signature"
    code = "invalid_signature"


class Conflict(ForkForgeError):
    status_code = 409
    title = "Conflict"
    code = "conflict"


class InvalidInput(ForkForgeError):
    status_code = 400
    title = "Bad Request"
    code = "invalid_input"


class ExternalService(ForkForgeError):
    """Store or downstream collaborator unavailable. Safe to retry."""

    status_code = 503
    title = "Service Unavailable"
    code = "external_service_unavailable"


class Internal(ForkForgeError):
    status_code = 500
    title = "Internal Server Error"
    code = "internal_error"
