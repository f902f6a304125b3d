"""Health check endpoints."""

from fastapi import APIRouter, Request, Response, status

from ..db.connection import check_health as check_db_health

router = APIRouter(tags=["Health"])


@router.get("/healthz")
async def health_check() -> dict:
    """Basic health check."""
    return {"status": "healthy", "service": "linkwatch"}


@router.get("/readyz")
async def readiness_check(request: Request, response: Response) -> dict:
    """Readiness check including the database and the polling scheduler."""
    container = request.app.state.container
    db_healthy = await check_db_health()
    scheduler = container.scheduler

    body = {
        "status": "ready",
        "database": "healthy" if db_healthy else "unhealthy",
        "scheduler": {
            "running": scheduler.is_running,
            "ticks": scheduler.ticks,
            "last_tick": scheduler.last_tick.isoformat() if scheduler.last_tick else None,
            "devices": scheduler.health_snapshot(),
        },
    }
    if not db_healthy:
        body["status"] = "not ready"
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return body


@router.get("/livez")
async def liveness_check() -> dict:
    """Liveness check."""
    return {"status": "alive"}
