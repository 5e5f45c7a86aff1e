"""
/api/v1/projects endpoints.
Project creation, bid document upload, analysis trigger and leveling.
"""

import uuid
from typing import Optional, Union

import structlog
from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.config import settings
from app.dependencies import (
    get_artifact_store,
    get_comparison_store,
    get_db,
    get_gateway,
    verify_api_key,
)
from app.engines.base import EngineError
from app.engines.registry import select_engine
from app.errors import PipelineError, PreconditionError
from app.llm.gateway import CompletionGateway
from app.models.enums import ProjectStatus
from app.models.tables import BidDocumentRow, ProjectRow
from app.review.leveling import LevelingService
from app.schemas.api import AnalyzeResponse, DocumentUploadResponse, ProjectCreate, ProjectResponse
from app.schemas.bids import BidDocument
from app.schemas.comparison import ComparisonResult
from app.schemas.leveling import BaselineRequest, LevelingConfigRequest, LevelingError, LevelingState
from app.storage.artifact_store import ArtifactStore
from app.storage.paths import doc_hash, raw_document_path
from app.store.comparison_store import ComparisonStore

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/projects", tags=["projects"], dependencies=[Depends(verify_api_key)])

_LEVELING_STATUS = {
    "not_found": status.HTTP_404_NOT_FOUND,
    "invalid_baseline": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "version_conflict": status.HTTP_409_CONFLICT,
}


async def _load_project(session: AsyncSession, project_id: str) -> ProjectRow:
    result = await session.execute(
        select(ProjectRow)
        .where(ProjectRow.id == project_id)
        .options(selectinload(ProjectRow.documents), selectinload(ProjectRow.comparison))
    )
    project = result.scalar_one_or_none()
    if project is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Project {project_id} not found")
    return project


def _comparison(project: ProjectRow) -> Optional[ComparisonResult]:
    row = project.comparison
    if row is None:
        return None
    return ComparisonResult(
        project_id=project.id,
        total_bids=row.total_bids,
        price_low=row.price_low,
        price_high=row.price_high,
        price_average=row.price_average,
        total_scope_items=row.total_scope_items,
        common_items=row.common_items,
        gap_items=row.gap_items,
        recommendation=row.recommendation_json,
        **(row.summary_json or {}),
    )


def _leveling_response(outcome: Union[LevelingState, LevelingError]) -> LevelingState:
    if isinstance(outcome, LevelingError):
        raise HTTPException(
            status_code=_LEVELING_STATUS[outcome.error],
            detail=outcome.model_dump(),
        )
    return outcome


# ── Projects ─────────────────────────────────────────────────

@router.post("", response_model=ProjectResponse, status_code=status.HTTP_201_CREATED)
async def create_project(body: ProjectCreate, session: AsyncSession = Depends(get_db)):
    project = ProjectRow(
        id=str(uuid.uuid4()),
        name=body.name,
        trade_type=body.trade_type,
        status=ProjectStatus.UPLOADING.value,
    )
    session.add(project)
    await session.flush()
    logger.info("project_created", project_id=project.id, trade_type=body.trade_type)
    return ProjectResponse(
        id=project.id, name=project.name, trade_type=project.trade_type, status=project.status,
    )


@router.get("/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str, session: AsyncSession = Depends(get_db)):
    project = await _load_project(session, project_id)
    return ProjectResponse(
        id=project.id,
        name=project.name,
        trade_type=project.trade_type,
        status=project.status,
        error_message=project.error_message,
        documents=[BidDocument.model_validate(d) for d in project.documents],
        comparison=_comparison(project),
    )


@router.post(
    "/{project_id}/documents",
    response_model=DocumentUploadResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    project_id: str,
    contractor_name: str = Form(...),
    file: UploadFile = File(...),
    session: AsyncSession = Depends(get_db),
    store: ArtifactStore = Depends(get_artifact_store),
):
    """Upload one contractor's bid document."""
    project = await _load_project(session, project_id)
    if len(project.documents) >= settings.MAX_BIDS:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A comparison holds at most {settings.MAX_BIDS} bids",
        )

    file_name = file.filename or "bid"
    file_type = file.content_type or ""
    try:
        select_engine(file_type)
    except EngineError:
        file_type = file_name
        try:
            select_engine(file_type)
        except EngineError:
            raise HTTPException(
                status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
                detail=f"Unsupported file type: {file.content_type}. Allowed: {settings.ALLOWED_MIME_TYPES}",
            )

    file_bytes = await file.read()
    file_size = len(file_bytes)

    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    if file_size > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File too large: {file_size} bytes. Max: {max_bytes} bytes",
        )
    if file_size == 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty file uploaded")

    file_hash = doc_hash(file_bytes)
    doc_id = str(uuid.uuid4())
    uri = store.save_bytes(raw_document_path(project_id, doc_id, file_name), file_bytes)

    session.add(BidDocumentRow(
        id=doc_id,
        project_id=project_id,
        contractor_name=contractor_name,
        file_name=file_name,
        file_type=file_type,
        file_uri=uri,
        file_size=file_size,
    ))
    await session.flush()

    logger.info(
        "document_uploaded",
        project_id=project_id,
        doc_id=doc_id,
        file_name=file_name,
        file_size_bytes=file_size,
        doc_hash=file_hash,
    )
    return DocumentUploadResponse(
        doc_id=doc_id,
        project_id=project_id,
        contractor_name=contractor_name,
        file_name=file_name,
        file_size_bytes=file_size,
        doc_hash=file_hash,
        status="uploading",
    )


@router.post("/{project_id}/analyze", response_model=AnalyzeResponse, status_code=status.HTTP_202_ACCEPTED)
async def analyze_project(
    project_id: str,
    inline: bool = Query(False, description="Run in this request instead of the worker queue"),
    session: AsyncSession = Depends(get_db),
    gateway: CompletionGateway = Depends(get_gateway),
    artifacts: ArtifactStore = Depends(get_artifact_store),
):
    """Start comparison analysis for a project."""
    project = await _load_project(session, project_id)
    if project.status == ProjectStatus.PROCESSING.value:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Analysis already running")

    if not inline:
        from app.worker.jobs import enqueue_analysis
        try:
            job_id = enqueue_analysis(project_id)
        except Exception as e:
            logger.warning("enqueue_failed", project_id=project_id, error=str(e))
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=f"Queue unavailable: {e}")
        return AnalyzeResponse(project_id=project_id, status="queued", job_id=job_id)

    from app.worker.jobs import build_pipeline
    try:
        result = await build_pipeline(session, gateway=gateway, artifacts=artifacts).run(project_id)
    except PreconditionError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message)
    except PipelineError as e:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)
    return AnalyzeResponse(project_id=project_id, status=ProjectStatus.COMPLETE.value, comparison=result)


# ── Leveling ─────────────────────────────────────────────────

@router.get("/{project_id}/leveling", response_model=LevelingState)
async def get_leveling(project_id: str, store: ComparisonStore = Depends(get_comparison_store)):
    return _leveling_response(await LevelingService(store).get(project_id))


@router.put("/{project_id}/leveling", response_model=LevelingState)
async def set_leveling(
    project_id: str,
    body: LevelingConfigRequest,
    store: ComparisonStore = Depends(get_comparison_store),
):
    return _leveling_response(await LevelingService(store).set_config(project_id, body))


@router.delete("/{project_id}/leveling", response_model=LevelingState)
async def clear_leveling(
    project_id: str,
    expected_version: Optional[int] = Query(None),
    store: ComparisonStore = Depends(get_comparison_store),
):
    return _leveling_response(await LevelingService(store).clear(project_id, expected_version))


@router.put("/{project_id}/leveling/baselines/{item_key:path}", response_model=LevelingState)
async def set_baseline(
    project_id: str,
    item_key: str,
    body: BaselineRequest,
    store: ComparisonStore = Depends(get_comparison_store),
):
    return _leveling_response(await LevelingService(store).set_baseline(project_id, item_key, body))


@router.delete("/{project_id}/leveling/baselines/{item_key:path}", response_model=LevelingState)
async def clear_baseline(
    project_id: str,
    item_key: str,
    expected_version: Optional[int] = Query(None),
    store: ComparisonStore = Depends(get_comparison_store),
):
    return _leveling_response(
        await LevelingService(store).clear_baseline(project_id, item_key, expected_version)
    )
