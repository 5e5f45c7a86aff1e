"""
Comparison result shapes: per-contractor summary, scope gaps and the
recommendation block. One ComparisonResult per project, upserted.
"""

from typing import Optional

from pydantic import BaseModel

from app.models.enums import ConfidenceLevel
from app.schemas.money import ZERO, Money
from app.schemas.stages import KeyFactor, PriceAnalysis, RecommendationWarning


class ContractorSummary(BaseModel):
    id: str
    name: str
    base_bid: Money
    exclusions_value: Money
    exclusion_count: int
    item_count: int
    scope_gaps_count: int = 0
    confidence_avg: float
    estimated_adds: Money = ZERO
    estimated_true_cost: Money = ZERO


class ScopeGap(BaseModel):
    description: str
    present_in: list[str] = []
    missing_from: list[str] = []
    excluded_by: list[str] = []
    estimated_value: Optional[Money] = None
    gap_notes: Optional[str] = None


class Recommendation(BaseModel):
    recommended_contractor_id: str
    recommended_contractor_name: str
    confidence: ConfidenceLevel
    reasoning: str
    key_factors: list[KeyFactor] = []
    warnings: list[RecommendationWarning] = []
    price_analysis: PriceAnalysis = PriceAnalysis()
    source: str = "model"  # model | heuristic


class ComparisonResult(BaseModel):
    project_id: str
    total_bids: int
    price_low: Optional[Money] = None
    price_high: Optional[Money] = None
    price_average: Optional[Money] = None
    total_items: int = 0
    total_scope_items: int = 0
    common_items: int = 0
    gap_items: int = 0
    match_rate: float = 0.0
    contractors: list[ContractorSummary] = []
    scope_gaps: list[ScopeGap] = []
    recommendation: Optional[Recommendation] = None
    notes: list[str] = []
