"""
Tests for reviewer baseline edits: validation, version checks and write-back.
"""

import pytest
import pytest_asyncio

from conftest import make_item
from app.review.leveling import LevelingService
from app.schemas.comparison import ComparisonResult
from app.schemas.leveling import (
    BaselineRequest,
    ItemBaseline,
    LevelingConfig,
    LevelingConfigRequest,
    LevelingError,
    LevelingState,
)


@pytest_asyncio.fixture
async def service(comparison_store):
    await comparison_store.replace_items("doc-a", [
        make_item("doc-a", "Duplex receptacles", 10000, quantity=100, unit_price=100),
    ])
    await comparison_store.replace_items("doc-b", [
        make_item("doc-b", "Duplex receptacles", 6000, quantity=50, unit_price=120),
    ])
    await comparison_store.replace_items("doc-c", [
        make_item("doc-c", "Duplex receptacles", 13500, quantity=150, unit_price=90),
    ])
    await comparison_store.upsert_comparison(ComparisonResult(project_id="proj-1", total_bids=3))
    return LevelingService(comparison_store)


def receptacles(quantity=100, contractor_id="doc-a", expected_version=None):
    return BaselineRequest(contractor_id=contractor_id, quantity=quantity, unit="ea", expected_version=expected_version)


class TestSetBaseline:

    @pytest.mark.asyncio
    async def test_applies_and_persists(self, service, comparison_store):
        state = await service.set_baseline("proj-1", "Duplex receptacles", receptacles())

        assert isinstance(state, LevelingState)
        assert state.config.enabled is True
        assert state.config.version == 1
        totals = {t.contractor_id: t.leveled_total for t in state.result.totals}
        assert totals == {"doc-a": 10000, "doc-b": 12000, "doc-c": 9000}
        assert state.result.as_bid_order == ["doc-b", "doc-a", "doc-c"]
        assert state.result.leveled_order == ["doc-c", "doc-a", "doc-b"]
        assert state.result.ranking_changed is True

        stored = await comparison_store.list_items("proj-1")
        assert stored["doc-a"][0].is_baseline is True
        assert stored["doc-b"][0].is_baseline is False
        assert stored["doc-b"][0].leveled_price == 12000

    @pytest.mark.asyncio
    async def test_replaces_existing_baseline_for_same_item(self, service):
        await service.set_baseline("proj-1", "Duplex receptacles", receptacles())
        state = await service.set_baseline("proj-1", "Duplex receptacles", receptacles(quantity=150, contractor_id="doc-c"))

        assert len(state.config.baselines) == 1
        assert state.config.baselines[0].contractor_id == "doc-c"
        assert state.config.version == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("quantity", [0, -1])
    async def test_non_positive_quantity_rejected(self, service, comparison_store, quantity):
        error = await service.set_baseline("proj-1", "Duplex receptacles", receptacles(quantity=quantity))

        assert isinstance(error, LevelingError)
        assert error.error == "invalid_baseline"
        assert (await comparison_store.get_leveling("proj-1")).version == 0

    @pytest.mark.asyncio
    async def test_unknown_contractor_rejected(self, service):
        error = await service.set_baseline("proj-1", "Duplex receptacles", receptacles(contractor_id="doc-z"))
        assert error.error == "invalid_baseline"

    @pytest.mark.asyncio
    async def test_empty_item_key_rejected(self, service):
        error = await service.set_baseline("proj-1", "  ", receptacles())
        assert error.error == "invalid_baseline"

    @pytest.mark.asyncio
    async def test_project_without_comparison(self, comparison_store):
        error = await LevelingService(comparison_store).set_baseline("proj-1", "Duplex receptacles", receptacles())
        assert error.error == "not_found"

    @pytest.mark.asyncio
    async def test_stale_version_conflicts(self, service):
        await service.set_baseline("proj-1", "Duplex receptacles", receptacles(expected_version=0))

        error = await service.set_baseline("proj-1", "Duplex receptacles", receptacles(quantity=120, expected_version=0))

        assert isinstance(error, LevelingError)
        assert error.error == "version_conflict"
        assert error.current_version == 1


class TestClear:

    @pytest.mark.asyncio
    async def test_clear_baseline_restores_as_bid(self, service, comparison_store):
        await service.set_baseline("proj-1", "Duplex receptacles", receptacles())

        state = await service.clear_baseline("proj-1", "Duplex receptacles")

        assert state.config.baselines == []
        assert state.result.ranking_changed is False
        stored = await comparison_store.list_items("proj-1")
        assert all(not i.is_baseline and i.leveled_price is None for items in stored.values() for i in items)

    @pytest.mark.asyncio
    async def test_clear_disables(self, service):
        await service.set_baseline("proj-1", "Duplex receptacles", receptacles())

        state = await service.clear("proj-1")

        assert state.config.enabled is False
        assert state.config.baselines == []

    @pytest.mark.asyncio
    async def test_get_unknown_project(self, comparison_store):
        error = await LevelingService(comparison_store).get("proj-9")
        assert error.error == "not_found"


class TestSetConfig:

    @pytest.mark.asyncio
    async def test_disabled_config_levels_nothing(self, service):
        request = LevelingConfigRequest(leveling=LevelingConfig(
            enabled=False,
            baselines=[ItemBaseline(item_key="Duplex receptacles", contractor_id="doc-a", quantity=100)],
        ))

        state = await service.set_config("proj-1", request)

        assert all(t.leveled_total == t.as_bid_total for t in state.result.totals)
        assert len(state.config.baselines) == 1

    @pytest.mark.asyncio
    async def test_duplicate_keys_rejected(self, service):
        baseline = ItemBaseline(item_key="Duplex receptacles", contractor_id="doc-a", quantity=100)
        request = LevelingConfigRequest(leveling=LevelingConfig(baselines=[baseline, baseline]))

        error = await service.set_config("proj-1", request)

        assert error.error == "invalid_baseline"

    @pytest.mark.asyncio
    async def test_unusable_baseline_rejected(self, service):
        request = LevelingConfigRequest(leveling=LevelingConfig(baselines=[
            ItemBaseline(item_key="Duplex receptacles", contractor_id="doc-a", quantity=0),
        ]))
        assert (await service.set_config("proj-1", request)).error == "invalid_baseline"
