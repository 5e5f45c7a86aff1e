"""
Prompt variant A/B selection and performance tracking.

Per (trade, stage) at most one non-control variant is active. Selection
returns it VARIANT_TRAFFIC_SHARE of the time and the control otherwise.
Selection and metric updates are best-effort and never raise.
"""

import random
import uuid
from typing import Optional

import structlog

from app.config import settings
from app.schemas.training import PromptVariant
from app.store.training_store import TrainingStore

logger = structlog.get_logger(__name__)


def promotion_score(variant: PromptVariant) -> float:
    """Higher confidence and fewer corrections score higher."""
    return (variant.avg_confidence or 0) * 100 - (variant.correction_rate or 0) * 50


def apply_run(
    variant: PromptVariant,
    avg_confidence: float,
    had_correction: bool,
    extraction_time_ms: Optional[float] = None,
) -> PromptVariant:
    """Fold one run into the variant's running averages."""
    n = variant.total_runs + 1
    corrections = variant.total_corrections + (1 if had_correction else 0)

    def running(avg: Optional[float], x: float) -> float:
        return x if avg is None else avg + (x - avg) / n

    return variant.model_copy(update={
        "total_runs": n,
        "total_corrections": corrections,
        "avg_confidence": running(variant.avg_confidence, avg_confidence),
        "correction_rate": corrections / n,
        "avg_extraction_time_ms": (
            running(variant.avg_extraction_time_ms, extraction_time_ms)
            if extraction_time_ms is not None else variant.avg_extraction_time_ms
        ),
    })


class VariantManager:

    def __init__(self, store: TrainingStore, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng or random.Random()

    async def select_variant(self, trade_type: str, stage: str) -> Optional[PromptVariant]:
        try:
            variants = await self.store.list_variants(trade_type, stage)
        except Exception as e:
            logger.warning("variant_select_failed", trade_type=trade_type, stage=stage, error=str(e))
            return None

        active = next((v for v in variants if v.is_active and not v.is_control), None)
        control = next((v for v in variants if v.is_control), None)

        if active and control:
            return active if self.rng.random() < settings.VARIANT_TRAFFIC_SHARE else control
        return active or control

    async def update_variant_metrics(
        self,
        variant_id: str,
        avg_confidence: float,
        had_correction: bool,
        extraction_time_ms: Optional[float] = None,
    ) -> None:
        try:
            variant = await self.store.get_variant(variant_id)
            if variant is None:
                logger.warning("variant_not_found", variant_id=variant_id)
                return
            await self.store.save_variant(
                apply_run(variant, avg_confidence, had_correction, extraction_time_ms)
            )
        except Exception as e:
            logger.warning("variant_metrics_update_failed", variant_id=variant_id, error=str(e))

    async def create_variant(
        self,
        trade_type: str,
        stage: str,
        name: str,
        content: str,
        is_control: bool = False,
        is_active: bool = False,
    ) -> Optional[str]:
        variant = PromptVariant(
            id=str(uuid.uuid4()),
            trade_type=trade_type,
            pipeline_stage=stage,
            name=name,
            content=content,
            is_control=is_control,
            is_active=is_active,
        )
        try:
            await self.store.save_variant(variant)
        except Exception as e:
            logger.error("variant_create_failed", trade_type=trade_type, stage=stage, error=str(e))
            return None
        return variant.id

    async def activate_variant(self, variant_id: str, trade_type: str, stage: str) -> bool:
        try:
            return await self.store.activate_variant(variant_id, trade_type, stage)
        except Exception as e:
            logger.error("variant_activate_failed", variant_id=variant_id, error=str(e))
            return False

    async def get_variant_performance(self, trade_type: str, stage: str) -> list[PromptVariant]:
        """Variants for a trade/stage, most-run first."""
        try:
            return await self.store.list_variants(trade_type, stage)
        except Exception as e:
            logger.warning("variant_performance_failed", trade_type=trade_type, stage=stage, error=str(e))
            return []

    async def auto_promote_best_variant(
        self, trade_type: str, stage: str, min_runs: int = settings.VARIANT_PROMOTION_MIN_RUNS,
    ) -> Optional[str]:
        """Activate the best-scoring eligible variant. Returns its id if it changed."""
        eligible = [
            v for v in await self.get_variant_performance(trade_type, stage)
            if v.total_runs >= min_runs and not v.is_control
        ]
        if not eligible:
            return None

        best = eligible[0]
        for v in eligible[1:]:
            if promotion_score(v) >= promotion_score(best):
                best = v

        if best.is_active:
            return None

        if await self.activate_variant(best.id, trade_type, stage):
            logger.info(
                "variant_auto_promoted",
                variant_id=best.id,
                trade_type=trade_type,
                stage=stage,
                score=round(promotion_score(best), 2),
            )
            return best.id
        return None
