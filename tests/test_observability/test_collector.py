"""
Tests for per-run telemetry collection and log masking.
"""

import pytest

from app.observability.collector import (
    ExtractionMetrics,
    NormalizationMetrics,
    PipelineMetricsCollector,
    RecommendationMetrics,
    categorize_error,
    safe_record,
)
from app.observability.logging import mask_secrets


class TestCollector:

    def test_no_row_without_extraction(self):
        assert PipelineMetricsCollector("electrical").build_row() is None

    def test_row_flattens_stages(self):
        collector = PipelineMetricsCollector("electrical", document_type="bid_comparison")
        collector.record_extraction(ExtractionMetrics(
            success=True, duration_ms=1200, items_count=3,
            confidence_scores=[0.9, 0.5, 0.7], items_needing_review=1,
        ))
        collector.record_normalization(NormalizationMetrics(success=True, duration_ms=300, match_rate=0.5))
        collector.record_recommendation(RecommendationMetrics(success=True, duration_ms=200, confidence="high"))

        row = collector.build_row()

        assert row["pipeline_run_id"] == collector.pipeline_run_id
        assert row["extraction_items_count"] == 3
        assert row["avg_confidence_score"] == pytest.approx(0.7)
        assert row["min_confidence_score"] == 0.5
        assert row["low_confidence_items_count"] == 1
        assert row["normalization_match_rate"] == 0.5
        assert row["recommendation_confidence"] == "high"
        assert "project_id" not in row

    def test_missing_later_stages_are_none(self):
        collector = PipelineMetricsCollector("electrical")
        collector.record_extraction(ExtractionMetrics(success=False, duration_ms=10, error_code="ERR_NO_DOCUMENTS"))

        row = collector.build_row()

        assert row["extraction_error_code"] == "ERR_NO_DOCUMENTS"
        assert row["normalization_success"] is None
        assert row["avg_confidence_score"] is None

    @pytest.mark.asyncio
    async def test_writer_failure_is_swallowed(self):
        async def writer(row):
            raise RuntimeError("db down")

        collector = PipelineMetricsCollector("electrical", writer=writer)
        collector.record_extraction(ExtractionMetrics(success=True, duration_ms=5))

        await collector.flush()

    @pytest.mark.asyncio
    async def test_writer_receives_row(self):
        rows = []

        async def writer(row):
            rows.append(row)

        collector = PipelineMetricsCollector("plumbing", writer=writer)
        collector.record_extraction(ExtractionMetrics(success=True, duration_ms=5, confidence_scores=[0.8]))
        await collector.flush()

        assert len(rows) == 1
        assert rows[0]["trade_type"] == "plumbing"

    def test_safe_record_tolerates_errors(self):
        def broken(data):
            raise ValueError("nope")

        safe_record(broken, None)


class TestCategorizeError:

    @pytest.mark.parametrize("message, category", [
        ("HTTP 429 Too Many Requests", "RATE_LIMIT"),
        ("read timed out", "TIMEOUT"),
        ("invalid JSON in response", "PARSE_ERROR"),
        ("401 Unauthorized", "AUTH_ERROR"),
        ("network unreachable", "NETWORK_ERROR"),
        ("insufficient_quota", "QUOTA_ERROR"),
        ("something else", "UNKNOWN_ERROR"),
    ])
    def test_categories(self, message, category):
        assert categorize_error(RuntimeError(message)) == category


class TestMaskSecrets:

    def test_credential_keys_masked(self):
        event = mask_secrets(None, "info", {"event": "call", "Authorization": "Bearer abc", "api_key": "k", "model": "gpt-4o"})
        assert event["Authorization"] == "***"
        assert event["api_key"] == "***"
        assert event["model"] == "gpt-4o"

    def test_empty_values_untouched(self):
        assert mask_secrets(None, "info", {"api_key": None}) == {"api_key": None}
