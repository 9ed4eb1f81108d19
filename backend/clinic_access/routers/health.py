"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime, timezone

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from clinic_access.config import settings
from clinic_access.services.permission_api import PermissionsAPI

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(request: Request):
    """Lightweight health check for load balancer (no Redis/backend check)."""
    return {
        "status": "ok",
        "service": "clinic-access",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "environment": settings.environment,
        "active_sessions": len(request.app.state.sessions),
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check (clinic backend and, when enabled, Redis)."""
    checks = {
        "service": "ok",
        "backend": "unknown",
        "redis": "disabled",
    }
    overall_healthy = True

    if await PermissionsAPI(request.app.state.http).ping():
        checks["backend"] = "ok"
    else:
        checks["backend"] = "error: unreachable"
        overall_healthy = False

    bus = request.app.state.cache.bus
    if bus is not None:
        try:
            await bus.ping()
            checks["redis"] = "ok"
        except Exception as e:
            checks["redis"] = f"error: {str(e)[:100]}"
            overall_healthy = False

    return JSONResponse(
        status_code=status.HTTP_200_OK if overall_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if overall_healthy else "not_ready", "checks": checks},
    )
