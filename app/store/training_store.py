"""
Persistence boundary for the learning loop: corrections, prompt variants,
learned patterns and fine-tuning export history.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.tables import (
    FineTuningExportRow,
    LearnedPatternRow,
    PromptVariantRow,
    TrainingContributionRow,
)
from app.schemas.training import (
    ExportRecord,
    LearnedPattern,
    PatternValue,
    PromptVariant,
    TrainingContribution,
)


class TrainingStore(ABC):

    @abstractmethod
    async def list_contributions(
        self,
        moderation_status: str = "approved",
        trade_types: Optional[list[str]] = None,
        correction_types: Optional[list[str]] = None,
        limit: Optional[int] = None,
    ) -> list[TrainingContribution]:
        """Newest first."""
        ...

    @abstractmethod
    async def count_contributions(self, moderation_status: str = "approved") -> int:
        ...

    @abstractmethod
    async def list_variants(self, trade_type: str, stage: str) -> list[PromptVariant]:
        ...

    @abstractmethod
    async def get_variant(self, variant_id: str) -> Optional[PromptVariant]:
        ...

    @abstractmethod
    async def save_variant(self, variant: PromptVariant) -> PromptVariant:
        """Insert or update by id."""
        ...

    @abstractmethod
    async def activate_variant(self, variant_id: str, trade_type: str, stage: str) -> bool:
        """Activate one variant and deactivate the others for the same trade/stage."""
        ...

    @abstractmethod
    async def list_patterns(
        self,
        trade_type: Optional[str] = None,
        active_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[LearnedPattern]:
        """Most frequent first."""
        ...

    @abstractmethod
    async def upsert_pattern(self, pattern: LearnedPattern, promote: bool = False) -> None:
        ...

    @abstractmethod
    async def record_export(self, record: ExportRecord) -> ExportRecord:
        ...

    @abstractmethod
    async def list_exports(self) -> list[ExportRecord]:
        """Newest first."""
        ...


def _variant_from_row(row: PromptVariantRow) -> PromptVariant:
    return PromptVariant(
        id=row.id,
        trade_type=row.trade_type,
        pipeline_stage=row.pipeline_stage,
        name=row.variant_name,
        content=row.variant_content,
        is_control=row.is_control,
        is_active=row.is_active,
        total_runs=row.total_runs,
        total_corrections=row.total_corrections,
        avg_confidence=row.avg_confidence,
        correction_rate=row.correction_rate,
        avg_extraction_time_ms=row.avg_extraction_time_ms,
    )


def _pattern_from_row(row: LearnedPatternRow) -> LearnedPattern:
    return LearnedPattern(
        trade_type=row.trade_type,
        refinement_type=row.refinement_type,
        pattern_key=row.pattern_key,
        pattern_value=PatternValue.model_validate(row.pattern_value),
        occurrence_count=row.occurrence_count,
        is_active=row.is_active,
    )


class SqlTrainingStore(TrainingStore):

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_contributions(
        self,
        moderation_status: str = "approved",
        trade_types: Optional[list[str]] = None,
        correction_types: Optional[list[str]] = None,
        limit: Optional[int] = None,
    ) -> list[TrainingContribution]:
        query = (
            select(TrainingContributionRow)
            .where(TrainingContributionRow.moderation_status == moderation_status)
            .order_by(TrainingContributionRow.created_at.desc())
        )
        if trade_types:
            query = query.where(TrainingContributionRow.trade_type.in_(trade_types))
        if correction_types:
            query = query.where(TrainingContributionRow.correction_type.in_(correction_types))
        if limit:
            query = query.limit(limit)

        result = await self.session.execute(query)
        return [TrainingContribution.model_validate(r) for r in result.scalars().all()]

    async def count_contributions(self, moderation_status: str = "approved") -> int:
        result = await self.session.execute(
            select(func.count(TrainingContributionRow.id))
            .where(TrainingContributionRow.moderation_status == moderation_status)
        )
        return result.scalar_one()

    async def list_variants(self, trade_type: str, stage: str) -> list[PromptVariant]:
        result = await self.session.execute(
            select(PromptVariantRow)
            .where(PromptVariantRow.trade_type == trade_type)
            .where(PromptVariantRow.pipeline_stage == stage)
            .order_by(PromptVariantRow.total_runs.desc())
        )
        return [_variant_from_row(r) for r in result.scalars().all()]

    async def get_variant(self, variant_id: str) -> Optional[PromptVariant]:
        row = await self.session.get(PromptVariantRow, variant_id)
        return _variant_from_row(row) if row else None

    async def save_variant(self, variant: PromptVariant) -> PromptVariant:
        row = await self.session.get(PromptVariantRow, variant.id)
        if row is None:
            row = PromptVariantRow(id=variant.id)
            self.session.add(row)
        row.trade_type = variant.trade_type
        row.pipeline_stage = variant.pipeline_stage
        row.variant_name = variant.name
        row.variant_content = variant.content
        row.is_control = variant.is_control
        row.is_active = variant.is_active
        row.total_runs = variant.total_runs
        row.total_corrections = variant.total_corrections
        row.avg_confidence = variant.avg_confidence
        row.correction_rate = variant.correction_rate
        row.avg_extraction_time_ms = variant.avg_extraction_time_ms
        await self.session.commit()
        return variant

    async def activate_variant(self, variant_id: str, trade_type: str, stage: str) -> bool:
        if await self.session.get(PromptVariantRow, variant_id) is None:
            return False
        await self.session.execute(
            update(PromptVariantRow)
            .where(PromptVariantRow.trade_type == trade_type)
            .where(PromptVariantRow.pipeline_stage == stage)
            .where(PromptVariantRow.is_active.is_(True))
            .where(PromptVariantRow.id != variant_id)
            .values(is_active=False)
        )
        result = await self.session.execute(
            update(PromptVariantRow)
            .where(PromptVariantRow.id == variant_id)
            .values(is_active=True)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def list_patterns(
        self,
        trade_type: Optional[str] = None,
        active_only: bool = False,
        limit: Optional[int] = None,
    ) -> list[LearnedPattern]:
        query = select(LearnedPatternRow).order_by(LearnedPatternRow.occurrence_count.desc())
        if trade_type:
            query = query.where(LearnedPatternRow.trade_type == trade_type)
        if active_only:
            query = query.where(LearnedPatternRow.is_active.is_(True))
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return [_pattern_from_row(r) for r in result.scalars().all()]

    async def upsert_pattern(self, pattern: LearnedPattern, promote: bool = False) -> None:
        result = await self.session.execute(
            select(LearnedPatternRow)
            .where(LearnedPatternRow.trade_type == pattern.trade_type)
            .where(LearnedPatternRow.refinement_type == pattern.refinement_type.value)
            .where(LearnedPatternRow.pattern_key == pattern.pattern_key)
        )
        row = result.scalar_one_or_none()
        if row is None:
            row = LearnedPatternRow(
                trade_type=pattern.trade_type,
                refinement_type=pattern.refinement_type.value,
                pattern_key=pattern.pattern_key,
                is_active=False,
            )
            self.session.add(row)

        row.pattern_value = pattern.pattern_value.model_dump(by_alias=True, exclude_none=True)
        row.occurrence_count = pattern.occurrence_count
        if promote and not row.is_active:
            row.is_active = True
            row.auto_promoted_at = datetime.now(timezone.utc)
        await self.session.commit()

    async def record_export(self, record: ExportRecord) -> ExportRecord:
        row = FineTuningExportRow(
            id=record.id,
            total_examples=record.total_examples,
            by_trade_type=record.by_trade_type,
            by_correction_type=record.by_correction_type,
            avg_quality_score=record.avg_quality_score,
            config=record.config,
            created_at=record.created_at or datetime.now(timezone.utc),
        )
        self.session.add(row)
        await self.session.commit()
        return record.model_copy(update={"created_at": row.created_at})

    async def list_exports(self) -> list[ExportRecord]:
        result = await self.session.execute(
            select(FineTuningExportRow).order_by(FineTuningExportRow.created_at.desc())
        )
        return [
            ExportRecord(
                id=r.id,
                total_examples=r.total_examples,
                by_trade_type=r.by_trade_type or {},
                by_correction_type=r.by_correction_type or {},
                avg_quality_score=r.avg_quality_score,
                config=r.config or {},
                created_at=r.created_at,
            )
            for r in result.scalars().all()
        ]
