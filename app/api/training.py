"""
/api/v1/training endpoints.
Fine-tuning exports, JSONL validation, pattern analysis and prompt variants.
"""

from typing import Union

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from app.dependencies import get_artifact_store, get_training_store, verify_api_key
from app.learning.pattern_analyzer import run_pattern_analysis
from app.learning.variants import VariantManager
from app.schemas.api import (
    ExportRequest,
    JsonlValidateRequest,
    PatternAnalyzeRequest,
    VariantCreate,
    VariantPromoteRequest,
    VariantPromoteResponse,
)
from app.schemas.training import (
    ExportConfig,
    ExportFailure,
    ExportResult,
    ExportStats,
    JsonlValidationReport,
    PatternSaveSummary,
    PromptVariant,
    QualityDistribution,
)
from app.storage.artifact_store import ArtifactStore
from app.storage.paths import training_export_path
from app.store.training_store import TrainingStore
from app.training.export_manager import ExportManager, validate_jsonl

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/training", tags=["training"], dependencies=[Depends(verify_api_key)])


# ── Exports ──────────────────────────────────────────────────

@router.post("/exports", response_model=Union[ExportResult, ExportFailure])
async def create_export(
    body: ExportRequest,
    store: TrainingStore = Depends(get_training_store),
    artifacts: ArtifactStore = Depends(get_artifact_store),
):
    """Generate a JSONL fine-tuning export. Nothing qualifying is reported as 422 with the failure body."""
    config = ExportConfig(**body.model_dump(exclude={"save_artifact"}))
    outcome = await ExportManager(store).generate_export(config)
    if isinstance(outcome, ExportFailure):
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=outcome.model_dump())

    if body.save_artifact:
        artifacts.save_text(training_export_path(outcome.export_id), outcome.jsonl_content)
    return outcome


@router.post("/exports/validate", response_model=JsonlValidationReport)
async def validate_export(body: JsonlValidateRequest):
    return validate_jsonl(body.content)


@router.get("/exports/stats", response_model=ExportStats)
async def export_stats(store: TrainingStore = Depends(get_training_store)):
    return await ExportManager(store).get_export_stats()


@router.get("/quality", response_model=QualityDistribution)
async def quality_distribution(store: TrainingStore = Depends(get_training_store)):
    return await ExportManager(store).get_quality_distribution()


# ── Patterns ─────────────────────────────────────────────────

@router.post("/patterns/analyze", response_model=PatternSaveSummary)
async def analyze_patterns(
    body: PatternAnalyzeRequest,
    store: TrainingStore = Depends(get_training_store),
):
    summary = await run_pattern_analysis(store, body.trade_type)
    logger.info("pattern_analysis_requested", trade_type=body.trade_type, promoted=summary.promoted)
    return summary


# ── Variants ─────────────────────────────────────────────────

@router.get("/variants", response_model=list[PromptVariant])
async def list_variants(
    trade_type: str = Query(...),
    pipeline_stage: str = Query(...),
    store: TrainingStore = Depends(get_training_store),
):
    return await VariantManager(store).get_variant_performance(trade_type, pipeline_stage)


@router.post("/variants", response_model=PromptVariant, status_code=status.HTTP_201_CREATED)
async def create_variant(body: VariantCreate, store: TrainingStore = Depends(get_training_store)):
    manager = VariantManager(store)
    variant_id = await manager.create_variant(
        body.trade_type, body.pipeline_stage, body.name, body.content,
        is_control=body.is_control, is_active=False,
    )
    if variant_id is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Variant could not be saved")
    if body.is_active and not body.is_control:
        await manager.activate_variant(variant_id, body.trade_type, body.pipeline_stage)
    return await store.get_variant(variant_id)


@router.post("/variants/{variant_id}/activate", response_model=PromptVariant)
async def activate_variant(variant_id: str, store: TrainingStore = Depends(get_training_store)):
    variant = await store.get_variant(variant_id)
    if variant is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Variant {variant_id} not found")
    if not await VariantManager(store).activate_variant(variant_id, variant.trade_type, variant.pipeline_stage):
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Variant could not be activated")
    return await store.get_variant(variant_id)


@router.post("/variants/promote", response_model=VariantPromoteResponse)
async def promote_variant(body: VariantPromoteRequest, store: TrainingStore = Depends(get_training_store)):
    manager = VariantManager(store)
    if body.min_runs is not None:
        promoted = await manager.auto_promote_best_variant(body.trade_type, body.pipeline_stage, body.min_runs)
    else:
        promoted = await manager.auto_promote_best_variant(body.trade_type, body.pipeline_stage)
    return VariantPromoteResponse(promoted_variant_id=promoted)
