"""Health check endpoints.

Provides liveness (/health) and readiness (/health/ready) checks. Readiness
pings the record store backing the room services.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from src.meetroom.config import get_settings

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check. No external dependencies are checked."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


async def _check_dependencies(request: Request) -> dict:
    """Check record store connectivity. Returns check results dict."""
    checks: dict = {"store": "ok"}

    store = getattr(request.app.state, "store", None)
    if store is None:
        checks["store"] = "error"
        checks["store_error"] = "store not initialized"
        return checks

    try:
        await store.ping()
    except Exception as e:
        checks["store"] = "error"
        checks["store_error"] = str(e)

    return checks


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: 200 when the store answers, 503 otherwise."""
    checks = await _check_dependencies(request)
    healthy = checks.get("store") == "ok"

    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "ready" if healthy else "degraded",
            "checks": checks,
        },
    )
