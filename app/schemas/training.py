"""
Training loop shapes: user corrections, quality scores, fine-tuning exports,
prompt variants and learned patterns.
"""

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field

from app.models.enums import ModerationStatus, RefinementType


class TrainingContribution(BaseModel):
    """A user correction. Immutable except for moderation_status."""
    id: str
    trade_type: str
    correction_type: str
    original_value: dict[str, Any] = {}
    corrected_value: dict[str, Any] = {}
    raw_text_snippet: Optional[str] = None
    confidence_score_original: Optional[float] = None
    moderation_status: ModerationStatus = ModerationStatus.PENDING
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


# ── Quality scoring ──────────────────────────────────────────

class QualityFactors(BaseModel):
    clarity: float = 0.0
    completeness: float = 0.0
    consistency: float = 0.0
    specificity: float = 0.0


class QualityScore(BaseModel):
    score: float
    factors: QualityFactors
    is_high_quality: bool
    notes: list[str] = []


class ScoredCorrection(BaseModel):
    id: str
    score: QualityScore


class QualityDistribution(BaseModel):
    total: int = 0
    high_quality: int = 0
    medium_quality: int = 0
    low_quality: int = 0
    by_trade_type: dict[str, dict[str, int]] = {}


# ── Fine-tuning export ───────────────────────────────────────

class ExportConfig(BaseModel):
    min_quality_score: float = 0.8
    max_examples: int = Field(default=10000, ge=1)
    trade_types: Optional[list[str]] = None
    correction_types: Optional[list[str]] = None
    include_metadata: bool = False


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class FineTuningExample(BaseModel):
    messages: list[ChatMessage]


class ExportResult(BaseModel):
    export_id: str
    total_examples: int
    by_trade_type: dict[str, int]
    by_correction_type: dict[str, int]
    avg_quality_score: float
    jsonl_content: str
    created_at: datetime


class ExportFailure(BaseModel):
    """Explicit error state for an export that produced nothing."""
    error: Literal["no_approved_corrections", "no_high_quality_corrections"]
    message: str


class ReadinessStatus(BaseModel):
    is_ready: bool
    current_count: int
    target_count: int
    percent_complete: int


class ExportStats(BaseModel):
    total_exports: int
    total_examples_exported: int
    last_export_at: Optional[datetime] = None
    readiness_status: ReadinessStatus


class JsonlValidationReport(BaseModel):
    is_valid: bool
    errors: list[str]
    example_count: int


class ExportRecord(BaseModel):
    id: str
    total_examples: int
    by_trade_type: dict[str, int] = {}
    by_correction_type: dict[str, int] = {}
    avg_quality_score: float = 0.0
    config: dict[str, Any] = {}
    created_at: Optional[datetime] = None


# ── Variants and patterns ────────────────────────────────────

class PromptVariant(BaseModel):
    id: str
    trade_type: str
    pipeline_stage: str
    name: str
    content: str
    is_control: bool = False
    is_active: bool = False
    total_runs: int = 0
    total_corrections: int = 0
    avg_confidence: Optional[float] = None
    correction_rate: Optional[float] = None
    avg_extraction_time_ms: Optional[float] = None

    model_config = {"from_attributes": True}


class PatternValue(BaseModel):
    from_: str = Field(alias="from")
    to: str
    context: Optional[str] = None

    model_config = {"populate_by_name": True}


class LearnedPattern(BaseModel):
    trade_type: str
    refinement_type: RefinementType
    pattern_key: str
    pattern_value: PatternValue
    occurrence_count: int = 1
    is_active: bool = False

    model_config = {"from_attributes": True}


class PatternAnalysisResult(BaseModel):
    new_patterns: list[LearnedPattern] = []
    updated_patterns: list[LearnedPattern] = []
    promoted_patterns: list[LearnedPattern] = []


class PatternSaveSummary(BaseModel):
    analyzed: int = 0
    inserted: int = 0
    updated: int = 0
    promoted: int = 0
