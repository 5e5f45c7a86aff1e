"""
Per-run pipeline telemetry.

The pipeline receives a MetricsSink and reports each stage to it. Sinks are
best-effort: the pipeline wraps every call with `safe_record`, so a broken
sink is logged and never fails or rolls back an analysis.

Metrics are anonymised: the run id is a random UUID with no link to the
project being compared.
"""

import uuid
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

import structlog
from pydantic import BaseModel

from app.models.enums import ErrorCategory
from app.observability import metrics

logger = structlog.get_logger(__name__)


class ExtractionMetrics(BaseModel):
    success: bool
    duration_ms: int
    items_count: int = 0
    error_code: Optional[str] = None
    confidence_scores: list[float] = []
    items_needing_review: int = 0


class NormalizationMetrics(BaseModel):
    success: bool
    duration_ms: int
    match_rate: Optional[float] = None
    scope_gaps_count: Optional[int] = None


class RecommendationMetrics(BaseModel):
    success: bool
    duration_ms: int
    confidence: Optional[str] = None


class MetricsSink(ABC):
    """Destination for stage telemetry of one pipeline run."""

    @abstractmethod
    def record_extraction(self, data: ExtractionMetrics) -> None:
        ...

    @abstractmethod
    def record_normalization(self, data: NormalizationMetrics) -> None:
        ...

    @abstractmethod
    def record_recommendation(self, data: RecommendationMetrics) -> None:
        ...

    @abstractmethod
    async def flush(self) -> None:
        ...


class NullMetricsSink(MetricsSink):
    """Discards everything."""

    def record_extraction(self, data: ExtractionMetrics) -> None:
        pass

    def record_normalization(self, data: NormalizationMetrics) -> None:
        pass

    def record_recommendation(self, data: RecommendationMetrics) -> None:
        pass

    async def flush(self) -> None:
        pass


MetricsWriter = Callable[[dict], Awaitable[None]]


class PipelineMetricsCollector(MetricsSink):
    """
    Collects stage metrics for one run and publishes them on flush.
    Publishes to Prometheus and, if a writer is given, persists one row.
    """

    def __init__(
        self,
        trade_type: str,
        document_type: str = "unknown",
        document_size_bytes: Optional[int] = None,
        writer: Optional[MetricsWriter] = None,
    ):
        self.pipeline_run_id = str(uuid.uuid4())
        self.trade_type = trade_type
        self.document_type = document_type
        self.document_size_bytes = document_size_bytes
        self.writer = writer

        self.extraction: Optional[ExtractionMetrics] = None
        self.normalization: Optional[NormalizationMetrics] = None
        self.recommendation: Optional[RecommendationMetrics] = None

    def record_extraction(self, data: ExtractionMetrics) -> None:
        self.extraction = data

    def record_normalization(self, data: NormalizationMetrics) -> None:
        self.normalization = data

    def record_recommendation(self, data: RecommendationMetrics) -> None:
        self.recommendation = data

    def build_row(self) -> Optional[dict]:
        """Flatten the collected metrics into one anonymised row."""
        if self.extraction is None:
            return None

        scores = self.extraction.confidence_scores
        norm = self.normalization
        rec = self.recommendation

        return {
            "pipeline_run_id": self.pipeline_run_id,
            "trade_type": self.trade_type,
            "document_type": self.document_type,
            "document_size_bytes": self.document_size_bytes,
            "extraction_success": self.extraction.success,
            "extraction_duration_ms": self.extraction.duration_ms,
            "extraction_items_count": self.extraction.items_count,
            "extraction_error_code": self.extraction.error_code,
            "normalization_success": norm.success if norm else None,
            "normalization_duration_ms": norm.duration_ms if norm else None,
            "normalization_match_rate": norm.match_rate if norm else None,
            "normalization_scope_gaps_count": norm.scope_gaps_count if norm else None,
            "recommendation_success": rec.success if rec else None,
            "recommendation_duration_ms": rec.duration_ms if rec else None,
            "recommendation_confidence": rec.confidence if rec else None,
            "avg_confidence_score": sum(scores) / len(scores) if scores else None,
            "min_confidence_score": min(scores) if scores else None,
            "max_confidence_score": max(scores) if scores else None,
            "low_confidence_items_count": sum(1 for s in scores if s < 0.6),
            "items_needing_review_count": self.extraction.items_needing_review,
        }

    async def flush(self) -> None:
        row = self.build_row()
        if row is None:
            return

        for score in self.extraction.confidence_scores:
            metrics.confidence_scores.labels(trade_type=self.trade_type).observe(score)
        if self.normalization and self.normalization.match_rate is not None:
            metrics.normalization_match_rate.labels(
                trade_type=self.trade_type,
            ).observe(self.normalization.match_rate)

        if self.writer is not None:
            try:
                await self.writer(row)
            except Exception as e:
                logger.error("metrics_write_failed", run_id=self.pipeline_run_id, error=str(e))


def safe_record(fn: Callable, *args) -> None:
    """Call a sink method, logging instead of raising on failure."""
    try:
        fn(*args)
    except Exception as e:
        logger.warning("metrics_record_failed", method=getattr(fn, "__name__", "?"), error=str(e))


async def safe_flush(sink: MetricsSink) -> None:
    try:
        await sink.flush()
    except Exception as e:
        logger.warning("metrics_flush_failed", error=str(e))


def categorize_error(error: BaseException) -> str:
    """Map an exception to a coarse error code for telemetry."""
    message = str(error).lower()

    if "rate limit" in message or "429" in message:
        return ErrorCategory.RATE_LIMIT.value
    if "timeout" in message or "timed out" in message:
        return ErrorCategory.TIMEOUT.value
    if "invalid" in message or "parse" in message:
        return ErrorCategory.PARSE_ERROR.value
    if "authentication" in message or "unauthorized" in message or "401" in message:
        return ErrorCategory.AUTH_ERROR.value
    if "network" in message or "fetch" in message:
        return ErrorCategory.NETWORK_ERROR.value
    if "quota" in message or "insufficient" in message:
        return ErrorCategory.QUOTA_ERROR.value

    return ErrorCategory.UNKNOWN_ERROR.value
