"""
Health check endpoint.

GET /health — checks MongoDB connectivity.
MongoDB failure → "unhealthy" (503); the service cannot authenticate anyone
without it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dependencies import get_db
from schemas.dto.responses.common import HealthResponse
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(db=Depends(get_db)) -> JSONResponse:
    checks: dict[str, str] = {}
    overall = "healthy"

    if db is None:
        log.error("health_check_failed", check="mongodb", error="not connected")
        checks["mongodb"] = "error"
        overall = "unhealthy"
    else:
        try:
            await db.client.admin.command("ping")
            checks["mongodb"] = "ok"
        except Exception as e:
            log.error("health_check_failed", check="mongodb", error=str(e))
            checks["mongodb"] = "error"
            overall = "unhealthy"

    status_code = 503 if overall == "unhealthy" else 200
    return JSONResponse(
        status_code=status_code,
        content=HealthResponse(status=overall, checks=checks).model_dump(),
    )
