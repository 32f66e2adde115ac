"""Health check endpoints."""

import logging

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from forkforge_api import __version__
from forkforge_api.db.session import get_db

router = APIRouter()
logger = logging.getLogger(__name__)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    services: dict[str, str]


def check_database(db: Session) -> str:
    """Check database connectivity.

    Returns:
        str: "up" if healthy, error message otherwise
    """
    try:
        db.execute(text("SELECT 1"))
        return "up"
    except SQLAlchemyError as e:
        logger.error(
            "Database health check failed",
            extra={"event": "health.database.down", "error_type": type(e).__name__},
        )
        return f"down: {type(e).__name__}"


@router.get("/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)) -> HealthResponse:
    """
    Health check endpoint.

    Returns service status and database health.
    Always returns 200 OK (use /readyz for a gating check).
    """
    return HealthResponse(
        status="healthy",
        version=__version__,
        services={"api": "up", "database": check_database(db)},
    )


@router.get("/readyz", response_model=HealthResponse)
def readiness_check(response: Response, db: Session = Depends(get_db)) -> HealthResponse:
    """
    Readiness endpoint.

    Returns 503 if the database is unreachable.
    """
    services = {"api": "up", "database": check_database(db)}

    if services["database"] != "up":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", version=__version__, services=services)

    return HealthResponse(status="ready", version=__version__, services=services)
