from fastapi import APIRouter

from app.core.config import get_settings

router = APIRouter()


@router.get("/healthz", summary="Health check")
async def health_check() -> dict:
    settings = get_settings()
    return {
        "status": "ok",
        "environment": settings.environment,
        "portpro_configured": settings.portpro_configured,
    }
