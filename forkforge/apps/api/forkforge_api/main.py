"""ForkForge API - FastAPI Application Entry Point."""

import logging
import os
import time
import uuid

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from forkforge_api import __version__
from forkforge_api.context import credential_id_var, request_id_var, user_id_var
from forkforge_api.errors import ForkForgeError
from forkforge_api.routers import api_keys, health, webhooks
from forkforge_api.schemas import ProblemDetail
from forkforge_api.utils import configure_json_logging

logger = logging.getLogger(__name__)


def _get_title_for_status(status_code: int) -> str:
    """Get human-readable title for HTTP status code."""
    titles = {
        400: "Bad Request",
        401: "Unauthorized",
        403: "Forbidden",
        404: "Not Found",
        405: "Method Not Allowed",
        409: "Conflict",
        422: "Unprocessable Entity",
        500: "Internal Server Error",
        503: "Service Unavailable",
    }
    return titles.get(status_code, f"HTTP {status_code}")


def _instance() -> str:
    """Opaque instance identifier derived from the request id."""
    request_id = request_id_var.get()
    return f"urn:forkforge:trace:{request_id or uuid.uuid4()}"


def _problem_response(
    status_code: int,
    *,
    title: str,
    detail,
    error: str,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    problem = ProblemDetail(
        type=f"urn:forkforge:problem:{error}",
        title=title,
        status=status_code,
        detail=detail,
        instance=_instance(),
        error=error,
        request_id=request_id_var.get() or None,
    )
    response_headers = dict(headers or {})
    if status_code >= 500:
        response_headers["Retry-After"] = "60"
    return JSONResponse(
        status_code=status_code,
        content=problem.model_dump(exclude_none=True),
        media_type="application/problem+json",
        headers=response_headers,
    )


# ============================================================================
# RFC 9457 Exception Handlers
# ============================================================================


async def forkforge_error_handler(request: Request, exc: ForkForgeError) -> JSONResponse:
    """Render domain errors as Problem Details.

    4xx -> warning log, 5xx -> error log + Retry-After: 60.
    401 adds WWW-Authenticate: Bearer.
    """
    log_extra = {
        "event": f"http.error.{exc.code}",
        "error_code": exc.code,
        "status_code": exc.status_code,
        "path": request.url.path,
    }
    if exc.status_code >= 500:
        logger.error(exc.title, extra=log_extra, exc_info=exc)
    else:
        logger.warning(exc.title, extra=log_extra)

    headers = {}
    if exc.status_code == status.HTTP_401_UNAUTHORIZED:
        headers["WWW-Authenticate"] = "Bearer"

    return _problem_response(
        exc.status_code,
        title=exc.title,
        detail=exc.detail,
        error=exc.code,
        headers=headers,
    )


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Handle framework HTTP exceptions (404 route, 405, ...) as Problem Details."""
    detail_value = exc.detail if exc.detail is not None else _get_title_for_status(exc.status_code)
    return _problem_response(
        exc.status_code,
        title=_get_title_for_status(exc.status_code),
        detail=detail_value,
        error=f"http_{exc.status_code}",
        headers=dict(exc.headers or {}),
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handle request validation errors (422) as Problem Details."""
    first_error = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(loc) for loc in first_error.get("loc", []))
    msg = first_error.get("msg", "Validation error")

    return _problem_response(
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        title="Request Validation Failed",
        detail=f"Invalid field '{field}': {msg}",
        error="validation_error",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle uncaught exceptions (500) as Problem Details."""
    logger.error(
        "Unhandled exception",
        extra={"event": "http.error.unhandled", "error_type": type(exc).__name__},
        exc_info=exc,
    )
    return _problem_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        title="Internal Server Error",
        detail="An unexpected error occurred. Please try again later.",
        error="internal_error",
    )


# ============================================================================
# Application Factory
# ============================================================================


def create_app() -> FastAPI:
    """Create the FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    new_app = FastAPI(
        title="ForkForge API",
        description="Credential lifecycle and payment-webhook provisioning with RFC 9457 error handling.",
        version=__version__,
        docs_url="/api-docs",
        redoc_url="/redoc",
    )

    new_app.add_exception_handler(ForkForgeError, forkforge_error_handler)
    new_app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    new_app.add_exception_handler(RequestValidationError, validation_exception_handler)
    new_app.add_exception_handler(Exception, general_exception_handler)

    new_app.include_router(health.router, tags=["health"])
    new_app.include_router(api_keys.router)
    new_app.include_router(webhooks.router)

    # Completion logging middleware (inner)
    @new_app.middleware("http")
    async def completion_logging_mw(request: Request, call_next):
        """Log every HTTP request completion.

        - Every HTTP request emits "http.request.completed"
        - Fields: method, path, status_code, duration_ms (+ request_id via formatter)
        - Logs even on exceptions (status_code=500)
        - Clears per-request contextvars at start and end
        """
        user_id_var.set("")
        credential_id_var.set("")

        start_time = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.info(
                "http.request.completed",
                extra={
                    "event": "http.request.completed",
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": status_code,
                    "duration_ms": round(duration_ms, 2),
                },
            )
            user_id_var.set("")
            credential_id_var.set("")

    # Request ID middleware (outermost for context propagation)
    @new_app.middleware("http")
    async def request_id_mw(request: Request, call_next):
        """Accept or generate X-Request-ID and echo it on the response."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request_id_var.set(request_id)
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    return new_app


# Set FORKFORGE_JSON_LOGS=false to disable (defaults to true for production)
if os.getenv("FORKFORGE_JSON_LOGS", "true").lower() != "false":
    configure_json_logging(log_level=os.getenv("LOG_LEVEL", "INFO"))

app = create_app()
