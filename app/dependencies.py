"""
FastAPI dependency injection.
Provides DB sessions, stores, the completion gateway and API key validation.
"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.llm.gateway import CompletionGateway
from app.models.database import get_session
from app.storage.artifact_store import ArtifactStore
from app.store.comparison_store import ComparisonStore, SqlComparisonStore
from app.store.training_store import SqlTrainingStore, TrainingStore


# ── Singleton instances ──────────────────────────────────────
_artifact_store: Optional[ArtifactStore] = None
_gateway: Optional[CompletionGateway] = None


def get_artifact_store() -> ArtifactStore:
    """Get or create the artifact store singleton."""
    global _artifact_store
    if _artifact_store is None:
        _artifact_store = ArtifactStore()
    return _artifact_store


def get_gateway() -> CompletionGateway:
    global _gateway
    if _gateway is None:
        _gateway = CompletionGateway()
    return _gateway


async def get_db() -> AsyncSession:
    """Yield an async DB session."""
    async for session in get_session():
        yield session


def get_comparison_store(session: AsyncSession = Depends(get_db)) -> ComparisonStore:
    return SqlComparisonStore(session)


def get_training_store(session: AsyncSession = Depends(get_db)) -> TrainingStore:
    return SqlTrainingStore(session)


async def verify_api_key(
    x_api_key: Optional[str] = Header(None, alias="X-API-Key"),
) -> Optional[str]:
    """
    Verify API key if configured.
    If API_KEY is not set, all requests are allowed (dev mode).
    """
    if settings.API_KEY is None:
        return None

    if x_api_key is None or x_api_key != settings.API_KEY:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )
    return x_api_key
