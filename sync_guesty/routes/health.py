"""
Health and readiness check endpoints for container probes.

/health answers as long as the process is up. /ready also checks the database
and reports how many properties have an availability snapshot loaded.
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from sync_guesty.db.engine import check_engine_health
from sync_guesty.dependencies import get_services
from sync_guesty.state import Services

logger = structlog.get_logger(__name__)

router = APIRouter()


@router.get("/health")
def health_check() -> JSONResponse:
    """
    Liveness probe endpoint.

    Example:
        >>> GET /health
        {"status": "ok"}
    """
    return JSONResponse(content={"status": "ok"})


@router.get("/ready")
def readiness_check(services: Services = Depends(get_services)) -> JSONResponse:
    """
    Readiness probe endpoint.

    Returns 503 if the database is not accessible. A cold availability cache
    does not make the service unready; it is reported for information.

    Example:
        >>> GET /ready
        {"status": "ready", "checks": {"database": "ok", "availability": "3/3 loaded"}}
    """
    checks = {}

    loaded = sum(
        1 for key in services.catalog.keys() if services.availability.get_snapshot(key)
    )
    checks["availability"] = f"{loaded}/{len(services.catalog.keys())} loaded"

    if check_engine_health(services.engine):
        checks["database"] = "ok"
        return JSONResponse(content={"status": "ready", "checks": checks})

    logger.error("readiness_check_failed", reason="database_not_accessible")
    checks["database"] = "failed"
    return JSONResponse(
        status_code=503,
        content={"status": "not ready", "checks": checks},
    )
