"""Health check endpoints."""

from fastapi import APIRouter

from civiportal.core.config import get_settings

router = APIRouter()


@router.get("/health")
def health() -> dict[str, str]:
    """Simple liveness endpoint."""

    settings = get_settings()
    return {"status": "ok", "service": settings.app_name, "env": settings.app_env}
