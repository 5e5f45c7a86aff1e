"""
Pipeline orchestrator: runs one comparison end to end.

Stages: PRECONDITIONS → AUGMENT → EXTRACT → NORMALIZE → RECOMMEND → PERSIST

The project status field is the single source of truth for callers:
uploading → processing → complete | error.
"""

import time
import traceback
import uuid
from typing import Callable, Optional

import structlog

from app.config import settings
from app.errors import PipelineError, PreconditionError
from app.learning.examples import (
    format_extraction_examples,
    format_normalization_examples,
    get_trade_examples,
)
from app.learning.patterns import get_pattern_prompt_section
from app.learning.variants import VariantManager
from app.llm.gateway import CompletionGateway
from app.models.enums import PipelineStage, ProjectStatus
from app.observability import metrics
from app.observability.collector import (
    ExtractionMetrics,
    MetricsSink,
    NormalizationMetrics,
    NullMetricsSink,
    RecommendationMetrics,
    safe_flush,
    safe_record,
)
from app.observability.logging import bind_run_context
from app.pipeline.extraction import ExtractionStage
from app.pipeline.normalization import ContractorBid, NormalizationStage, normalized_categories
from app.pipeline.recommendation import (
    RecommendationStage,
    build_scope_gaps,
    build_summaries,
    candidates_of,
)
from app.schemas.bids import Project
from app.schemas.comparison import ComparisonResult
from app.schemas.money import ZERO, to_money
from app.schemas.training import PromptVariant
from app.storage.artifact_store import ArtifactStore
from app.store.comparison_store import ComparisonStore
from app.store.training_store import TrainingStore

logger = structlog.get_logger(__name__)

SinkFactory = Callable[[Project], MetricsSink]


def _null_sink(project: Project) -> MetricsSink:
    return NullMetricsSink()


def _count(counter, **labels) -> None:
    """Increment a labelled counter. Telemetry failures are logged, never raised."""
    safe_record(lambda: counter.labels(**labels).inc())


class ComparisonPipeline:
    """
    Main comparison pipeline.
    Collaborators are injected so the API, the worker and tests can wire their own.
    """

    def __init__(
        self,
        store: ComparisonStore,
        training_store: TrainingStore,
        gateway: CompletionGateway,
        artifacts: Optional[ArtifactStore] = None,
        variants: Optional[VariantManager] = None,
        sink_factory: SinkFactory = _null_sink,
        concurrency: int = settings.EXTRACTION_CONCURRENCY,
    ):
        self.store = store
        self.training_store = training_store
        self.gateway = gateway
        self.variants = variants or VariantManager(training_store)
        self.sink_factory = sink_factory
        self.concurrency = concurrency

        self.extraction = ExtractionStage(gateway, store, artifacts or ArtifactStore())
        self.normalization = NormalizationStage(gateway)
        self.recommendation = RecommendationStage(gateway)

    async def run(self, project_id: str) -> ComparisonResult:
        """
        Main entry point: analyze every bid document of a project.
        Returns the persisted ComparisonResult; raises PipelineError on failure.
        """
        started_at = time.time()
        run_id = str(uuid.uuid4())
        bind_run_context(project_id=project_id, run_id=run_id)

        project = await self.store.get_project(project_id)
        if project is None:
            raise PreconditionError(f"Project {project_id} not found", "ERR_NOT_FOUND")

        try:
            self._check_preconditions(project)
        except PreconditionError as e:
            logger.warning("comparison_precondition_failed", error_code=e.error_code, error=e.message)
            await self.store.update_project_status(project_id, ProjectStatus.ERROR.value, e.message)
            _count(metrics.comparisons_failed_total, error_code=e.error_code)
            raise

        logger.info("comparison_started", documents=len(project.documents), trade_type=project.trade_type)
        _count(metrics.comparisons_started_total, trade_type=project.trade_type)
        await self.store.update_project_status(project_id, ProjectStatus.PROCESSING.value)

        sink = self.sink_factory(project)
        recorded: set[str] = set()

        try:
            result = await self._analyze(project, sink, recorded)

            await self.store.update_project_status(project_id, ProjectStatus.COMPLETE.value)
            _count(metrics.comparisons_completed_total, trade_type=project.trade_type)
            logger.info(
                "comparison_completed",
                recommended=result.recommendation.recommended_contractor_id if result.recommendation else None,
                total_items=result.total_items,
                match_rate=round(result.match_rate, 3),
                duration_ms=int((time.time() - started_at) * 1000),
            )
            return result

        except PipelineError as e:
            await self._fail(project_id, sink, e.error_code, e.message, recorded)
            raise
        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            logger.error("comparison_failed", error=error_msg, traceback=traceback.format_exc())
            await self._fail(project_id, sink, "ERR_PIPELINE", error_msg, recorded)
            raise PipelineError(error_msg) from e
        finally:
            await safe_flush(sink)

    # ─── Stages ───────────────────────────────────────────────

    def _check_preconditions(self, project: Project) -> None:
        if not self.gateway.is_configured():
            raise PreconditionError("No completion service credential is configured", "ERR_NO_CREDENTIAL")

        count = len(project.documents)
        if count < settings.MIN_BIDS:
            raise PreconditionError(
                f"At least {settings.MIN_BIDS} bid documents are required, got {count}", "ERR_TOO_FEW_BIDS",
            )
        if count > settings.MAX_BIDS:
            raise PreconditionError(
                f"At most {settings.MAX_BIDS} bid documents are allowed, got {count}", "ERR_TOO_MANY_BIDS",
            )

    async def _analyze(self, project: Project, sink: MetricsSink, recorded: set[str]) -> ComparisonResult:
        trade = project.trade_type

        # ── AUGMENT ──
        examples = await get_trade_examples(self.training_store, trade)
        patterns = await get_pattern_prompt_section(self.training_store, trade)
        extraction_variant = await self.variants.select_variant(trade, PipelineStage.EXTRACTION.value)
        normalization_variant = await self.variants.select_variant(trade, PipelineStage.NORMALIZATION.value)
        recommendation_variant = await self.variants.select_variant(trade, PipelineStage.RECOMMENDATION.value)

        # ── EXTRACT ──
        extraction = await self.extraction.run(
            project.documents,
            trade,
            examples=format_extraction_examples(examples),
            patterns=patterns,
            variant=_variant_text(extraction_variant),
            concurrency=self.concurrency,
        )
        failures = extraction.failures
        if extraction.succeeded == 0:
            error_code = "ERR_NO_DOCUMENTS"
        else:
            error_code = failures[0].error_code if failures else None
        safe_record(sink.record_extraction, ExtractionMetrics(
            success=not failures,
            duration_ms=extraction.duration_ms,
            items_count=extraction.total_items,
            error_code=error_code,
            confidence_scores=extraction.confidence_scores,
            items_needing_review=extraction.items_needing_review,
        ))
        recorded.add(PipelineStage.EXTRACTION.value)
        if extraction.succeeded == 0:
            raise PipelineError("None of the bid documents could be extracted", "ERR_NO_DOCUMENTS")

        if extraction_variant is not None:
            scores = extraction.confidence_scores
            await self.variants.update_variant_metrics(
                extraction_variant.id,
                avg_confidence=sum(scores) / len(scores) if scores else 0.0,
                had_correction=False,
                extraction_time_ms=extraction.duration_ms,
            )

        # ── NORMALIZE ──
        readable = [
            ContractorBid(id=r.document.id, name=r.document.contractor_name, items=r.items)
            for r in extraction.results if r.ok
        ]
        normalized = await self.normalization.run(
            trade,
            readable,
            examples=format_normalization_examples(examples),
            variant=_variant_text(normalization_variant),
        )
        safe_record(sink.record_normalization, NormalizationMetrics(
            success=normalized.ok,
            duration_ms=normalized.duration_ms,
            match_rate=normalized.match_rate,
            scope_gaps_count=normalized.gap_count,
        ))
        await self.store.set_normalized_categories(normalized_categories(normalized.output))

        # ── RECOMMEND ──
        groups = normalized.output.normalized_items
        everyone = [
            ContractorBid(id=r.document.id, name=r.document.contractor_name, items=r.items)
            for r in extraction.results
        ]
        summaries = build_summaries(everyone, groups)
        scope_gaps = build_scope_gaps(groups)
        recommended = await self.recommendation.run(
            trade, summaries, scope_gaps, variant=_variant_text(recommendation_variant),
        )
        safe_record(sink.record_recommendation, RecommendationMetrics(
            success=recommended.error is None,
            duration_ms=recommended.duration_ms,
            confidence=recommended.recommendation.confidence.value,
        ))

        # ── PERSIST ──
        notes = [
            f"{r.document.contractor_name}: extraction failed ({r.error})" for r in failures
        ]
        if normalized.error:
            notes.append(f"Scope matching unavailable, items listed unmatched ({normalized.error})")
        if recommended.error:
            notes.append(f"Recommendation ranked by estimated true cost ({recommended.error})")

        base_bids = [s.base_bid for s in candidates_of(summaries) if s.base_bid > 0]
        gap_items = sum(1 for g in groups if g.is_scope_gap)
        result = ComparisonResult(
            project_id=project.id,
            total_bids=len(project.documents),
            price_low=min(base_bids) if base_bids else None,
            price_high=max(base_bids) if base_bids else None,
            price_average=to_money(sum(base_bids, ZERO) / len(base_bids)) if base_bids else None,
            total_items=extraction.total_items,
            total_scope_items=len(groups),
            common_items=len(groups) - gap_items,
            gap_items=gap_items,
            match_rate=normalized.match_rate,
            contractors=summaries,
            scope_gaps=scope_gaps,
            recommendation=recommended.recommendation,
            notes=notes,
        )
        await self.store.upsert_comparison(result)
        return result

    async def _fail(
        self,
        project_id: str,
        sink: MetricsSink,
        error_code: str,
        error_message: str,
        recorded: set[str],
    ) -> None:
        """Mark the comparison failed. Never raises."""
        _count(metrics.comparisons_failed_total, error_code=error_code)
        if PipelineStage.EXTRACTION.value not in recorded:
            safe_record(sink.record_extraction, ExtractionMetrics(
                success=False, duration_ms=0, error_code=error_code,
            ))
        try:
            await self.store.update_project_status(project_id, ProjectStatus.ERROR.value, error_message)
        except Exception as e:
            logger.error("failed_to_mark_failure", project_id=project_id, error=str(e))


def _variant_text(variant: Optional[PromptVariant]) -> str:
    if variant is None or not variant.content:
        return ""
    return f"\n{variant.content}\n"
