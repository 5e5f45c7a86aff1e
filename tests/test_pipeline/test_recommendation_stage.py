"""
Tests for contractor summaries, the heuristic ranking and the value guard.

The scenario: A bids $245,000 with nothing excluded, B bids $218,500 but
excludes $42,000 of lighting, C bids $267,200 with nothing excluded.
B has the lowest base bid; A has the lowest true cost.
"""

import pytest

from conftest import ScriptedGateway, as_json, make_item
from app.errors import CompletionError
from app.models.enums import ConfidenceLevel, ScopeStatus, WarningType
from app.pipeline.normalization import ContractorBid
from app.pipeline.recommendation import (
    RecommendationStage,
    apply_value_guard,
    build_scope_gaps,
    build_summaries,
    heuristic_recommendation,
)
from app.schemas.stages import ContractorEntry, NormalizedScopeItem


def scenario_bids():
    return [
        ContractorBid("doc-a", "Acme Electric", [
            make_item("doc-a", "Service and distribution", 200000, id="a1"),
            make_item("doc-a", "Lighting", 45000, id="a2"),
        ]),
        ContractorBid("doc-b", "Bolt Power", [
            make_item("doc-b", "Service and distribution", 218500, id="b1"),
            make_item("doc-b", "Lighting", 42000, id="b2", is_exclusion=True),
        ]),
        ContractorBid("doc-c", "Circuit Co", [
            make_item("doc-c", "Service and distribution", 220000, id="c1"),
            make_item("doc-c", "Lighting", 47200, id="c2"),
        ]),
    ]


def scenario_groups():
    service = NormalizedScopeItem(
        normalized_description="Service and distribution",
        contractors=[
            ContractorEntry(contractor_id="doc-a", status=ScopeStatus.INCLUDED, price=200000),
            ContractorEntry(contractor_id="doc-b", status=ScopeStatus.INCLUDED, price=218500),
            ContractorEntry(contractor_id="doc-c", status=ScopeStatus.INCLUDED, price=220000),
        ],
    )
    lighting = NormalizedScopeItem(
        normalized_description="Lighting",
        contractors=[
            ContractorEntry(contractor_id="doc-a", status=ScopeStatus.INCLUDED, price=45000),
            ContractorEntry(contractor_id="doc-b", status=ScopeStatus.EXCLUDED, price=42000),
            ContractorEntry(contractor_id="doc-c", status=ScopeStatus.INCLUDED, price=47200),
        ],
        is_scope_gap=True,
    )
    return [service, lighting]


@pytest.fixture
def summaries():
    return build_summaries(scenario_bids(), scenario_groups())


def model_pick(contractor_id, confidence="high"):
    return as_json({
        "recommended_contractor_id": contractor_id,
        "recommended_contractor_name": "whatever the model says",
        "confidence": confidence,
        "reasoning": "Lowest price.",
        "key_factors": [{"factor": "Price", "description": "Lowest base bid"}],
        "warnings": [],
    })


class TestSummaries:

    def test_base_and_true_cost(self, summaries):
        by_id = {s.id: s for s in summaries}
        assert by_id["doc-a"].base_bid == 245000
        assert by_id["doc-a"].estimated_true_cost == 245000
        assert by_id["doc-b"].base_bid == 218500
        assert by_id["doc-b"].exclusions_value == 42000
        assert by_id["doc-b"].exclusion_count == 1
        assert by_id["doc-b"].scope_gaps_count == 1
        assert by_id["doc-b"].estimated_true_cost == 260500
        assert by_id["doc-c"].base_bid == 267200

    def test_not_mentioned_gap_adds_estimated_value(self):
        bids = scenario_bids()
        bids[1].items = bids[1].items[:1]
        groups = scenario_groups()
        groups[1].contractors[1] = ContractorEntry(contractor_id="doc-b")

        b = build_summaries(bids, groups)[1]

        assert b.exclusions_value == 0
        assert b.estimated_adds == 45000
        assert b.estimated_true_cost == 263500

    def test_scope_gaps(self):
        gaps = build_scope_gaps(scenario_groups())
        assert len(gaps) == 1
        assert gaps[0].present_in == ["doc-a", "doc-c"]
        assert gaps[0].excluded_by == ["doc-b"]
        assert gaps[0].missing_from == []
        assert gaps[0].estimated_value == 45000


class TestHeuristic:

    def test_lowest_true_cost_wins(self, summaries):
        rec = heuristic_recommendation(summaries)
        assert rec.recommended_contractor_id == "doc-a"
        assert rec.source == "heuristic"
        assert rec.confidence == ConfidenceLevel.HIGH
        assert rec.price_analysis.lowest_base_bid.contractor_name == "Bolt Power"
        assert rec.price_analysis.lowest_base_bid.amount == 218500

    def test_warnings_flag_excluding_contractor(self, summaries):
        rec = heuristic_recommendation(summaries)
        flagged = {(w.contractor_id, w.type) for w in rec.warnings}
        assert ("doc-b", WarningType.EXCLUSION_RISK) in flagged
        assert ("doc-b", WarningType.SCOPE_GAP) in flagged
        assert not any(w.type == WarningType.PRICE_CONCERN for w in rec.warnings)

    def test_close_race_is_medium(self, summaries):
        summaries[2].estimated_true_cost = 246000
        assert heuristic_recommendation(summaries).confidence == ConfidenceLevel.MEDIUM

    def test_low_confidence_extraction_is_low(self, summaries):
        summaries[0].confidence_avg = 0.5
        assert heuristic_recommendation(summaries).confidence == ConfidenceLevel.LOW

    def test_contractor_without_items_never_picked(self, summaries):
        summaries[0].item_count = 0
        summaries[0].base_bid = 0
        summaries[0].estimated_true_cost = 0
        rec = heuristic_recommendation(summaries)
        assert rec.recommended_contractor_id == "doc-b"
        assert [c.contractor_id for c in rec.price_analysis.estimated_true_cost] == ["doc-b", "doc-c"]


class TestValueGuard:

    def test_lowest_base_pick_is_downgraded(self, summaries):
        rec = heuristic_recommendation(summaries).model_copy(update={
            "recommended_contractor_id": "doc-b",
            "recommended_contractor_name": "Bolt Power",
            "warnings": [],
        })

        guarded = apply_value_guard(rec, summaries)

        assert guarded.confidence == ConfidenceLevel.MEDIUM
        assert [(w.contractor_id, w.type) for w in guarded.warnings] == [("doc-b", WarningType.EXCLUSION_RISK)]

    def test_true_cost_pick_untouched(self, summaries):
        rec = heuristic_recommendation(summaries)
        assert apply_value_guard(rec, summaries) == rec


class TestRecommendationStage:

    @pytest.mark.asyncio
    async def test_model_pick_of_lowest_base_is_guarded(self, summaries):
        gateway = ScriptedGateway([model_pick("doc-b")])

        outcome = await RecommendationStage(gateway).run("electrical", summaries, [])

        rec = outcome.recommendation
        assert outcome.error is None
        assert rec.source == "model"
        assert rec.recommended_contractor_id == "doc-b"
        assert rec.recommended_contractor_name == "Bolt Power"
        assert rec.confidence == ConfidenceLevel.MEDIUM
        assert any(w.contractor_id == "doc-b" and w.type == WarningType.EXCLUSION_RISK for w in rec.warnings)
        totals = {c.contractor_id: c.total for c in rec.price_analysis.estimated_true_cost}
        assert totals == {"doc-a": 245000, "doc-b": 260500, "doc-c": 267200}

    @pytest.mark.asyncio
    async def test_model_pick_of_true_cost_kept(self, summaries):
        gateway = ScriptedGateway([model_pick("doc-a")])

        outcome = await RecommendationStage(gateway).run("electrical", summaries, [])

        assert outcome.recommendation.recommended_contractor_id == "doc-a"
        assert outcome.recommendation.confidence == ConfidenceLevel.HIGH

    @pytest.mark.asyncio
    async def test_unknown_contractor_falls_back(self, summaries):
        gateway = ScriptedGateway([model_pick("doc-z")])

        outcome = await RecommendationStage(gateway).run("electrical", summaries, [])

        assert outcome.error == "Unknown contractor id: doc-z"
        assert outcome.recommendation.source == "heuristic"
        assert outcome.recommendation.recommended_contractor_id == "doc-a"

    @pytest.mark.asyncio
    async def test_completion_failure_falls_back(self, summaries):
        gateway = ScriptedGateway([CompletionError("Completion failed after 3 attempts: 500")])

        outcome = await RecommendationStage(gateway).run("electrical", summaries, [])

        assert outcome.error.startswith("Completion failed")
        assert outcome.recommendation.recommended_contractor_id == "doc-a"

    @pytest.mark.asyncio
    async def test_failed_contractor_not_offered(self, summaries):
        summaries[0].item_count = 0
        gateway = ScriptedGateway([model_pick("doc-a")])

        outcome = await RecommendationStage(gateway).run("electrical", summaries, [])

        assert outcome.error == "Unknown contractor id: doc-a"
        assert outcome.recommendation.recommended_contractor_id != "doc-a"
