"""
Stage output contracts.

The completion service returns free text expected to be JSON. These models
are what each stage decodes that text into; anything that fails validation is
treated as a decode failure, never as partial data.
"""

from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.config import settings
from app.models.enums import ConfidenceLevel, ScopeStatus, WarningType
from app.schemas.money import Money


# ── Extraction ───────────────────────────────────────────────

class ExtractedLineItem(BaseModel):
    """
    A line item as returned by the extraction stage.

    Confidence convention:
    - 1.0 explicitly stated
    - 0.8 reasonably inferred
    - 0.6 ambiguous
    - 0.4 significant uncertainty
    needs_review is recomputed from the score, whatever the model said.
    """
    description: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[Money] = None
    total_price: Optional[Money] = None
    category: str = "other"
    is_exclusion: bool = False
    is_inclusion: bool = False
    confidence_score: float = Field(default=0.6)
    needs_review: bool = False
    raw_text: str = ""
    notes: Optional[str] = None

    @field_validator("confidence_score", mode="before")
    @classmethod
    def _clamp_confidence(cls, v):
        if v is None:
            return 0.6
        return min(1.0, max(0.0, float(v)))

    @field_validator("raw_text", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or ""

    @model_validator(mode="after")
    def _derive_needs_review(self):
        self.needs_review = self.confidence_score < settings.NEEDS_REVIEW_THRESHOLD
        return self


class ExtractionOutput(BaseModel):
    contractor_name: str = ""
    base_bid_total: Optional[Money] = None
    items: list[ExtractedLineItem] = []
    exclusions_summary: list[str] = []
    inclusions_summary: list[str] = []
    extraction_notes: str = ""

    @field_validator("contractor_name", "extraction_notes", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or ""


# ── Normalization ────────────────────────────────────────────

class ContractorEntry(BaseModel):
    contractor_id: str
    contractor_name: str = ""
    status: ScopeStatus = ScopeStatus.NOT_MENTIONED
    price: Optional[Money] = None
    original_description: Optional[str] = None
    original_item_id: Optional[str] = None


class NormalizedScopeItem(BaseModel):
    normalized_description: str
    category: str = "other"
    contractors: list[ContractorEntry] = []
    is_scope_gap: bool = False
    gap_notes: Optional[str] = None

    def entry_for(self, contractor_id: str) -> Optional[ContractorEntry]:
        for entry in self.contractors:
            if entry.contractor_id == contractor_id:
                return entry
        return None


class NormalizationOutput(BaseModel):
    normalized_items: list[NormalizedScopeItem] = []
    normalization_notes: str = ""

    @field_validator("normalization_notes", mode="before")
    @classmethod
    def _none_to_empty(cls, v):
        return v or ""


# ── Recommendation ───────────────────────────────────────────

class KeyFactor(BaseModel):
    factor: str
    description: str = ""


class RecommendationWarning(BaseModel):
    contractor_id: Optional[str] = None
    type: WarningType = WarningType.OTHER
    description: str

    @field_validator("type", mode="before")
    @classmethod
    def _unknown_type_is_other(cls, v):
        try:
            return WarningType(v)
        except ValueError:
            return WarningType.OTHER


class LowestBaseBid(BaseModel):
    contractor_name: str
    amount: Money


class EstimatedTrueCost(BaseModel):
    contractor_id: Optional[str] = None
    contractor_name: str
    base: Money
    estimated_adds: Money
    total: Money


class PriceAnalysis(BaseModel):
    lowest_base_bid: Optional[LowestBaseBid] = None
    estimated_true_cost: list[EstimatedTrueCost] = []


class RecommendationOutput(BaseModel):
    recommended_contractor_id: str
    recommended_contractor_name: str = ""
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    reasoning: str = ""
    key_factors: list[KeyFactor] = []
    warnings: list[RecommendationWarning] = []
    price_analysis: PriceAnalysis = PriceAnalysis()

    @field_validator("confidence", mode="before")
    @classmethod
    def _lower_confidence(cls, v):
        if v is None:
            return ConfidenceLevel.MEDIUM
        return v.lower() if isinstance(v, str) else v
