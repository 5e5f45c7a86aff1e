"""
Tests for prompt variant selection, run tracking and auto-promotion.
"""

import pytest

from app.learning.variants import VariantManager, apply_run, promotion_score
from app.schemas.training import PromptVariant


def variant(id, **kwargs):
    defaults = dict(trade_type="electrical", pipeline_stage="extraction", name=id, content=f"{id} content")
    defaults.update(kwargs)
    return PromptVariant(id=id, **defaults)


class TestSelectVariant:

    @pytest.mark.asyncio
    async def test_nothing_configured(self, training_store, rng):
        assert await VariantManager(training_store, rng).select_variant("electrical", "extraction") is None

    @pytest.mark.asyncio
    async def test_traffic_split(self, training_store, rng):
        training_store.variants["active"] = variant("active", is_active=True)
        training_store.variants["control"] = variant("control", is_control=True)
        manager = VariantManager(training_store, rng)

        picks = [(await manager.select_variant("electrical", "extraction")).id for _ in range(1000)]

        assert 720 <= picks.count("active") <= 880
        assert picks.count("active") + picks.count("control") == 1000

    @pytest.mark.asyncio
    async def test_only_control(self, training_store, rng):
        training_store.variants["control"] = variant("control", is_control=True)
        picked = await VariantManager(training_store, rng).select_variant("electrical", "extraction")
        assert picked.id == "control"

    @pytest.mark.asyncio
    async def test_inactive_variant_not_selected(self, training_store, rng):
        training_store.variants["idle"] = variant("idle")
        assert await VariantManager(training_store, rng).select_variant("electrical", "extraction") is None

    @pytest.mark.asyncio
    async def test_other_stage_ignored(self, training_store, rng):
        training_store.variants["norm"] = variant("norm", pipeline_stage="normalization", is_active=True)
        assert await VariantManager(training_store, rng).select_variant("electrical", "extraction") is None

    @pytest.mark.asyncio
    async def test_store_failure_gives_none(self, training_store, rng):
        training_store.variants["active"] = variant("active", is_active=True)
        training_store.fail_reads = True
        assert await VariantManager(training_store, rng).select_variant("electrical", "extraction") is None


class TestRunTracking:

    def test_running_averages(self):
        v = apply_run(variant("v"), avg_confidence=0.9, had_correction=True, extraction_time_ms=1000)
        v = apply_run(v, avg_confidence=0.7, had_correction=False, extraction_time_ms=3000)

        assert v.total_runs == 2
        assert v.total_corrections == 1
        assert v.avg_confidence == pytest.approx(0.8)
        assert v.correction_rate == pytest.approx(0.5)
        assert v.avg_extraction_time_ms == pytest.approx(2000)

    def test_missing_time_keeps_average(self):
        v = apply_run(variant("v", avg_extraction_time_ms=1500.0, total_runs=3), 0.8, False)
        assert v.avg_extraction_time_ms == 1500.0

    @pytest.mark.asyncio
    async def test_update_persists(self, training_store):
        training_store.variants["v"] = variant("v")

        await VariantManager(training_store).update_variant_metrics("v", 0.75, had_correction=False)

        assert training_store.variants["v"].total_runs == 1
        assert training_store.variants["v"].avg_confidence == 0.75

    @pytest.mark.asyncio
    async def test_unknown_variant_is_ignored(self, training_store):
        await VariantManager(training_store).update_variant_metrics("nope", 0.75, had_correction=False)
        assert training_store.variants == {}


class TestManagement:

    @pytest.mark.asyncio
    async def test_create_and_activate(self, training_store):
        manager = VariantManager(training_store)
        first = await manager.create_variant("electrical", "extraction", "a", "A", is_active=True)
        second = await manager.create_variant("electrical", "extraction", "b", "B")

        assert await manager.activate_variant(second, "electrical", "extraction") is True

        assert training_store.variants[first].is_active is False
        assert training_store.variants[second].is_active is True

    @pytest.mark.asyncio
    async def test_performance_ordered_by_runs(self, training_store):
        training_store.variants["few"] = variant("few", total_runs=3)
        training_store.variants["many"] = variant("many", total_runs=30)

        listed = await VariantManager(training_store).get_variant_performance("electrical", "extraction")

        assert [v.id for v in listed] == ["many", "few"]


class TestAutoPromote:

    def test_promotion_score(self):
        assert promotion_score(variant("v", avg_confidence=0.9, correction_rate=0.2)) == pytest.approx(80)

    @pytest.mark.asyncio
    async def test_best_eligible_promoted(self, training_store):
        training_store.variants.update({
            "current": variant("current", is_active=True, total_runs=80, avg_confidence=0.8, correction_rate=0.2),
            "better": variant("better", total_runs=60, avg_confidence=0.9, correction_rate=0.1),
            "fresh": variant("fresh", total_runs=5, avg_confidence=0.99, correction_rate=0.0),
            "control": variant("control", is_control=True, total_runs=90, avg_confidence=1.0, correction_rate=0.0),
        })

        promoted = await VariantManager(training_store).auto_promote_best_variant("electrical", "extraction", min_runs=50)

        assert promoted == "better"
        assert training_store.variants["better"].is_active is True
        assert training_store.variants["current"].is_active is False

    @pytest.mark.asyncio
    async def test_already_active_best_is_noop(self, training_store):
        training_store.variants["current"] = variant(
            "current", is_active=True, total_runs=80, avg_confidence=0.9, correction_rate=0.0,
        )
        promoted = await VariantManager(training_store).auto_promote_best_variant("electrical", "extraction", min_runs=50)
        assert promoted is None

    @pytest.mark.asyncio
    async def test_no_eligible_variants(self, training_store):
        training_store.variants["fresh"] = variant("fresh", total_runs=1, avg_confidence=1.0)
        assert await VariantManager(training_store).auto_promote_best_variant("electrical", "extraction") is None
