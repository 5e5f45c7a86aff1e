"""
Tests for stage prompt assembly.
"""

from app.llm.prompts import (
    DEFAULT_CHECKLIST,
    extraction_messages,
    normalization_messages,
    recommendation_messages,
    trade_checklist,
)
from app.schemas.comparison import ContractorSummary, ScopeGap


class TestExtractionMessages:

    def test_roles_and_document(self):
        messages = extraction_messages("electrical", "Service 400A $12,000")
        assert [m["role"] for m in messages] == ["system", "user"]
        assert "Service 400A $12,000" in messages[1]["content"]
        assert "electrical bid" in messages[1]["content"]

    def test_confidence_convention_stated(self):
        prompt = extraction_messages("electrical", "text")[1]["content"]
        assert "1.0 explicitly stated" in prompt
        assert "0.4 significant uncertainty" in prompt
        assert "confidence_score < 0.7" in prompt

    def test_augmentation_appended(self):
        prompt = extraction_messages("plumbing", "text", examples="EX", patterns="PAT", variant="VAR")[1]["content"]
        assert prompt.index("PAT") < prompt.index("EX") < prompt.index("VAR") < prompt.index("Document text")

    def test_without_augmentation(self):
        plain = extraction_messages("plumbing", "text")[1]["content"]
        assert "LEARNED" not in plain


class TestChecklist:

    def test_known_trade(self):
        assert "Fire alarm" in trade_checklist("Electrical ")

    def test_unknown_trade_uses_default(self):
        checklist = trade_checklist("masonry")
        assert checklist.splitlines() == [f"- {i}" for i in DEFAULT_CHECKLIST]


class TestStageMessages:

    def test_normalization_embeds_bids(self):
        bids = [{"contractor_id": "doc-a", "contractor_name": "Acme", "items": [{"id": "item-1"}]}]
        prompt = normalization_messages("electrical", bids, examples="NORM-EX")[1]["content"]
        assert prompt.startswith("Match scope items")
        assert '"item-1"' in prompt
        assert "NORM-EX" in prompt

    def test_recommendation_names_gap_contractors(self):
        summaries = [
            ContractorSummary(
                id="doc-b", name="Bolt Power", base_bid=218500, exclusions_value=42000,
                exclusion_count=1, item_count=2, confidence_avg=0.9,
            ),
        ]
        gaps = [ScopeGap(description="Lighting", excluded_by=["doc-b"], estimated_value=45000)]

        prompt = recommendation_messages("electrical", summaries, gaps)[1]["content"]

        assert prompt.startswith("Recommend one of")
        assert '"Bolt Power"' in prompt
        assert "not automatically the best value" in prompt
