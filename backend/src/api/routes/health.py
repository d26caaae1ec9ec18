from fastapi import APIRouter
from fastapi.responses import JSONResponse

from src.platform.health import get_health_checker

router = APIRouter(tags=["health"])


@router.get("/health")
def health():
    """Liveness/readiness probe. Returns 503 when the service is degraded."""
    health_status = get_health_checker().get_health_status()
    status_code = 200 if health_status["status"] == "ok" else 503
    return JSONResponse(status_code=status_code, content=health_status)
