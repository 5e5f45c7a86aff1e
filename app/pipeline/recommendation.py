"""
Recommendation stage.

Contractor summaries, scope gaps and the price analysis are computed here
from extracted items and normalized groups. The model only chooses and
explains. When it fails or names a contractor that is not in the comparison,
a deterministic ranking on estimated true cost takes its place.

A value guard runs on every recommendation: a pick that is cheapest on
base bid but not on true cost gets an exclusion-risk warning and at most
medium confidence.
"""

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

import structlog

from app.config import settings
from app.errors import CompletionError
from app.llm.gateway import CompletionGateway
from app.llm.prompts import recommendation_messages
from app.models.enums import ConfidenceLevel, PipelineStage, ScopeStatus, WarningType
from app.observability import metrics
from app.pipeline.decoding import decode
from app.pipeline.normalization import ContractorBid
from app.schemas.comparison import ContractorSummary, Recommendation, ScopeGap
from app.schemas.money import ZERO, to_money
from app.schemas.stages import (
    EstimatedTrueCost,
    KeyFactor,
    LowestBaseBid,
    NormalizedScopeItem,
    PriceAnalysis,
    RecommendationOutput,
    RecommendationWarning,
)

logger = structlog.get_logger(__name__)

PRICE_CONCERN_RATIO = Decimal("0.8")
HIGH_CONFIDENCE_MARGIN = Decimal("0.05")


@dataclass
class RecommendationOutcome:
    recommendation: Recommendation
    duration_ms: int = 0
    error: Optional[str] = None


# ── Summaries ────────────────────────────────────────────────

def gap_estimated_value(group: NormalizedScopeItem) -> Optional[Decimal]:
    """First positive price among contractors that include the item."""
    for entry in group.contractors:
        if entry.status == ScopeStatus.INCLUDED and entry.price and entry.price > 0:
            return entry.price
    return None


def build_scope_gaps(groups: list[NormalizedScopeItem]) -> list[ScopeGap]:
    gaps = []
    for group in groups:
        if not group.is_scope_gap:
            continue
        by_status = {s: [] for s in ScopeStatus}
        for entry in group.contractors:
            by_status[entry.status].append(entry.contractor_id)
        gaps.append(ScopeGap(
            description=group.normalized_description,
            present_in=by_status[ScopeStatus.INCLUDED],
            missing_from=by_status[ScopeStatus.NOT_MENTIONED],
            excluded_by=by_status[ScopeStatus.EXCLUDED],
            estimated_value=gap_estimated_value(group),
            gap_notes=group.gap_notes,
        ))
    return gaps


def build_summaries(bids: list[ContractorBid], groups: list[NormalizedScopeItem]) -> list[ContractorSummary]:
    """
    base_bid:        sum of non-exclusion item totals
    estimated_adds:  exclusions value plus the estimated value of every gap
                     this contractor neither includes nor prices
    """
    gap_groups = [g for g in groups if g.is_scope_gap]
    summaries = []

    for bid in bids:
        base = sum((i.total_price or ZERO for i in bid.items if not i.is_exclusion), ZERO)
        exclusions = [i for i in bid.items if i.is_exclusion]
        exclusions_value = sum((i.total_price or ZERO for i in exclusions), ZERO)

        gaps = 0
        adds = exclusions_value
        for group in gap_groups:
            entry = group.entry_for(bid.id)
            if entry is None or entry.status == ScopeStatus.INCLUDED:
                continue
            gaps += 1
            if entry.status == ScopeStatus.NOT_MENTIONED or not entry.price:
                adds += gap_estimated_value(group) or ZERO

        confidence = (
            sum(i.confidence_score for i in bid.items) / len(bid.items) if bid.items else 0.0
        )
        summaries.append(ContractorSummary(
            id=bid.id,
            name=bid.name,
            base_bid=to_money(base),
            exclusions_value=to_money(exclusions_value),
            exclusion_count=len(exclusions),
            item_count=len(bid.items),
            scope_gaps_count=gaps,
            confidence_avg=confidence,
            estimated_adds=to_money(adds),
            estimated_true_cost=to_money(base + adds),
        ))
    return summaries


def candidates_of(summaries: list[ContractorSummary]) -> list[ContractorSummary]:
    """Contractors whose bid produced items. Falls back to everyone."""
    return [s for s in summaries if s.item_count > 0] or list(summaries)


def build_price_analysis(candidates: list[ContractorSummary]) -> PriceAnalysis:
    priced = [s for s in candidates if s.base_bid > 0]
    lowest = min(priced, key=lambda s: s.base_bid) if priced else None
    return PriceAnalysis(
        lowest_base_bid=LowestBaseBid(contractor_name=lowest.name, amount=lowest.base_bid) if lowest else None,
        estimated_true_cost=[
            EstimatedTrueCost(
                contractor_id=s.id,
                contractor_name=s.name,
                base=s.base_bid,
                estimated_adds=s.estimated_adds,
                total=s.estimated_true_cost,
            )
            for s in candidates
        ],
    )


# ── Heuristic ────────────────────────────────────────────────

def standard_warnings(candidates: list[ContractorSummary]) -> list[RecommendationWarning]:
    warnings = []
    priced = [s.base_bid for s in candidates if s.base_bid > 0]
    average = sum(priced, ZERO) / len(priced) if priced else ZERO

    for s in candidates:
        if s.exclusions_value > 0:
            warnings.append(RecommendationWarning(
                contractor_id=s.id,
                type=WarningType.EXCLUSION_RISK,
                description=f"{s.name} excludes ${s.exclusions_value:,.0f} across {s.exclusion_count} items",
            ))
        if s.scope_gaps_count:
            warnings.append(RecommendationWarning(
                contractor_id=s.id,
                type=WarningType.SCOPE_GAP,
                description=f"{s.name} is missing or excludes {s.scope_gaps_count} scope items others carry",
            ))
        if average and 0 < s.base_bid < average * PRICE_CONCERN_RATIO:
            warnings.append(RecommendationWarning(
                contractor_id=s.id,
                type=WarningType.PRICE_CONCERN,
                description=f"{s.name} is more than 20% below the average base bid",
            ))
    return warnings


def heuristic_recommendation(summaries: list[ContractorSummary]) -> Recommendation:
    """Lowest true cost, then fewest exclusions, then highest confidence."""
    candidates = candidates_of(summaries)
    ranked = sorted(candidates, key=lambda s: (s.estimated_true_cost, s.exclusion_count, -s.confidence_avg))
    best = ranked[0]

    margin = ZERO
    if len(ranked) > 1 and ranked[1].estimated_true_cost > 0:
        runner_up = ranked[1].estimated_true_cost
        margin = (runner_up - best.estimated_true_cost) / runner_up

    if best.confidence_avg < settings.CONFIDENCE_THRESHOLD_LOW:
        confidence = ConfidenceLevel.LOW
    elif margin >= HIGH_CONFIDENCE_MARGIN and best.confidence_avg >= settings.CONFIDENCE_THRESHOLD_MEDIUM:
        confidence = ConfidenceLevel.HIGH
    else:
        confidence = ConfidenceLevel.MEDIUM

    return Recommendation(
        recommended_contractor_id=best.id,
        recommended_contractor_name=best.name,
        confidence=confidence,
        reasoning=(
            f"{best.name} has the lowest estimated true cost "
            f"(${best.estimated_true_cost:,.0f}) once exclusions and scope gaps are priced in."
        ),
        key_factors=[
            KeyFactor(
                factor="Estimated true cost",
                description=f"Base ${best.base_bid:,.0f} plus ${best.estimated_adds:,.0f} estimated adds",
            ),
            KeyFactor(
                factor="Scope coverage",
                description=f"{best.scope_gaps_count} scope gaps, {best.exclusion_count} exclusions",
            ),
        ],
        warnings=standard_warnings(candidates),
        price_analysis=build_price_analysis(candidates),
        source="heuristic",
    )


def apply_value_guard(rec: Recommendation, summaries: list[ContractorSummary]) -> Recommendation:
    candidates = candidates_of(summaries)
    pick = next((s for s in candidates if s.id == rec.recommended_contractor_id), None)
    if pick is None:
        return rec

    lowest_base = min(s.base_bid for s in candidates)
    lowest_true = min(s.estimated_true_cost for s in candidates)
    if pick.base_bid > lowest_base or pick.estimated_true_cost <= lowest_true:
        return rec

    warnings = list(rec.warnings)
    if not any(w.contractor_id == pick.id and w.type == WarningType.EXCLUSION_RISK for w in warnings):
        warnings.append(RecommendationWarning(
            contractor_id=pick.id,
            type=WarningType.EXCLUSION_RISK,
            description=(
                f"{pick.name} has the lowest base bid but not the lowest estimated true cost "
                f"(${pick.estimated_true_cost:,.0f} vs ${lowest_true:,.0f})"
            ),
        ))
    confidence = ConfidenceLevel.MEDIUM if rec.confidence == ConfidenceLevel.HIGH else rec.confidence
    logger.info("value_guard_applied", contractor_id=pick.id)
    return rec.model_copy(update={"warnings": warnings, "confidence": confidence})


# ── Stage ────────────────────────────────────────────────────

class RecommendationStage:

    def __init__(self, gateway: CompletionGateway):
        self.gateway = gateway

    async def run(
        self,
        trade_type: str,
        summaries: list[ContractorSummary],
        scope_gaps: list[ScopeGap],
        variant: str = "",
    ) -> RecommendationOutcome:
        start = time.monotonic()
        candidates = candidates_of(summaries)
        by_id = {s.id: s for s in candidates}
        recommendation = None
        error = None

        try:
            response = await self.gateway.complete(
                recommendation_messages(trade_type, candidates, scope_gaps, variant),
                response_format={"type": "json_object"},
            )
            decoded = decode(response, RecommendationOutput)
            if not decoded.ok:
                error = decoded.error
                metrics.pipeline_stage_decode_failures_total.labels(stage=PipelineStage.RECOMMENDATION.value).inc()
            elif decoded.value.recommended_contractor_id not in by_id:
                error = f"Unknown contractor id: {decoded.value.recommended_contractor_id}"
            else:
                out = decoded.value
                recommendation = Recommendation(
                    recommended_contractor_id=out.recommended_contractor_id,
                    recommended_contractor_name=by_id[out.recommended_contractor_id].name,
                    confidence=out.confidence,
                    reasoning=out.reasoning,
                    key_factors=out.key_factors,
                    warnings=out.warnings,
                    price_analysis=build_price_analysis(candidates),
                    source="model",
                )
        except CompletionError as e:
            error = e.message

        if recommendation is None:
            logger.warning("recommendation_fallback", error=error)
            recommendation = heuristic_recommendation(summaries)

        recommendation = apply_value_guard(recommendation, summaries)

        duration = time.monotonic() - start
        metrics.pipeline_stage_duration_seconds.labels(stage=PipelineStage.RECOMMENDATION.value).observe(duration)
        logger.info(
            "recommendation_complete",
            contractor_id=recommendation.recommended_contractor_id,
            confidence=recommendation.confidence.value,
            source=recommendation.source,
        )
        return RecommendationOutcome(
            recommendation=recommendation, duration_ms=int(duration * 1000), error=error,
        )
