"""
Health Check Routes
Service health monitoring endpoints
Source: https://microservices.io/patterns/observability/health-check-api.html
"""

from typing import Any

from fastapi import APIRouter

from src.db.connection import check_db_connection
from src.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])

SERVICE_NAME = "referral-intake-api"


@router.get("/health")
async def health_check() -> dict[str, Any]:
    """Liveness probe; does not touch dependencies."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
    }


@router.get("/health/detailed")
async def detailed_health_check() -> dict[str, Any]:
    """Readiness probe including the database."""
    db_healthy = await check_db_connection()
    if not db_healthy:
        logger.warning("Detailed health check: database unreachable")

    return {
        "status": "healthy" if db_healthy else "unhealthy",
        "service": SERVICE_NAME,
        "checks": {
            "database": "healthy" if db_healthy else "unhealthy",
        },
    }
