"""
Health Check Endpoints.

Provides health status for the API and its dependencies.
"""
import os
import time
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ..models import HealthStatus
from ..deps import get_db
from ...database.auth_db import AuthDB

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

# Version from environment or default
VERSION = os.getenv("APP_VERSION", "0.1.0")


@router.get("", response_model=HealthStatus)
async def health_check(request: Request, db: AuthDB = Depends(get_db)):
    """
    Basic health check endpoint.

    Reports the database and the rate limit backend.
    """
    services = {}
    overall_healthy = True

    # Check database
    try:
        start = time.time()
        with db.get_session() as session:
            session.execute(text("SELECT 1"))
        latency = (time.time() - start) * 1000
        services["database"] = f"healthy ({latency:.1f}ms)"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        services["database"] = f"unhealthy: {str(e)}"
        overall_healthy = False

    # Check Redis behind the expiring buckets
    redis_client = request.app.state.rate_limits.totp.redis
    try:
        if redis_client is not None:
            start = time.time()
            redis_client.ping()
            latency = (time.time() - start) * 1000
            services["redis"] = f"healthy ({latency:.1f}ms)"
        else:
            services["redis"] = "fallback_mode (in-memory)"
    except Exception as e:
        services["redis"] = f"unhealthy: {str(e)}"
        # Buckets fall back to memory when Redis is down

    return HealthStatus(
        status="healthy" if overall_healthy else "unhealthy",
        version=VERSION,
        services=services,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the service is running.
    """
    return {"status": "alive"}


@router.get("/ready")
async def readiness(db: AuthDB = Depends(get_db)):
    """Kubernetes readiness probe. 503 when the database is unreachable."""
    try:
        with db.get_session() as session:
            session.execute(text("SELECT 1"))
        return {"status": "ready"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "not ready"})
