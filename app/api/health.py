"""
Health check endpoints.
/health always answers 200 and reports dependency state; /health/ready is the strict probe.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from app.config import settings
from app.dependencies import get_gateway
from app.llm.gateway import CompletionGateway
from app.models.database import async_session_factory

router = APIRouter(tags=["health"])


async def _database_ok() -> tuple[bool, str]:
    try:
        async with async_session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            return result.scalar() == 1, ""
    except Exception as e:
        return False, str(e)[:200]


@router.get("/health")
async def health_check(gateway: CompletionGateway = Depends(get_gateway)):
    db_ok, db_error = await _database_ok()

    response = {
        "status": "healthy" if db_ok else "degraded",
        "version": settings.APP_VERSION,
        "pipeline_version": settings.PIPELINE_VERSION,
        "database": "connected" if db_ok else "unreachable",
        "completion_service": "configured" if gateway.is_configured() else "missing_credential",
    }
    if db_error:
        response["database_error"] = db_error

    return response


@router.get("/health/ready")
async def readiness_check():
    db_ok, _ = await _database_ok()
    return {"ready": db_ok}
