"""
Reviewer-driven quantity leveling.

Every edit reads the stored baseline set, applies the change, writes it
back under an optimistic version check, recomputes totals and per-item
leveled prices, and returns the new state. Failures come back as
LevelingError values rather than exceptions.
"""

from typing import Optional, Union

import structlog

from app.observability import metrics
from app.pipeline.leveling import compute_leveled_totals, item_leveling
from app.schemas.leveling import (
    BaselineRequest,
    ItemBaseline,
    LevelingConfig,
    LevelingConfigRequest,
    LevelingError,
    LevelingState,
)
from app.store.comparison_store import ComparisonStore

logger = structlog.get_logger(__name__)

LevelingOutcome = Union[LevelingState, LevelingError]


def _not_found(project_id: str) -> LevelingError:
    return LevelingError(error="not_found", message=f"No comparison result for project {project_id}")


class LevelingService:

    def __init__(self, store: ComparisonStore):
        self.store = store

    async def get(self, project_id: str) -> LevelingOutcome:
        config = await self.store.get_leveling(project_id)
        if config is None:
            return _not_found(project_id)
        return await self._state(project_id, config, apply=False)

    async def set_baseline(self, project_id: str, item_key: str, request: BaselineRequest) -> LevelingOutcome:
        if not item_key.strip():
            return LevelingError(error="invalid_baseline", message="Item key must not be empty")
        if request.quantity <= 0:
            return LevelingError(error="invalid_baseline", message="Baseline quantity must be greater than zero")

        project = await self.store.get_project(project_id)
        if project is None:
            return _not_found(project_id)
        if request.contractor_id not in {d.id for d in project.documents}:
            return LevelingError(
                error="invalid_baseline",
                message=f"Contractor {request.contractor_id} is not part of this comparison",
            )

        config = await self.store.get_leveling(project_id)
        if config is None:
            return _not_found(project_id)

        baseline = ItemBaseline(
            item_key=item_key,
            contractor_id=request.contractor_id,
            quantity=request.quantity,
            unit=request.unit,
        )
        updated = config.model_copy(update={
            "enabled": True,
            "baselines": [b for b in config.baselines if b.item_key != item_key] + [baseline],
        })
        return await self._save(project_id, updated, request.expected_version, config.version)

    async def clear_baseline(
        self, project_id: str, item_key: str, expected_version: Optional[int] = None,
    ) -> LevelingOutcome:
        config = await self.store.get_leveling(project_id)
        if config is None:
            return _not_found(project_id)

        updated = config.model_copy(update={
            "baselines": [b for b in config.baselines if b.item_key != item_key],
        })
        return await self._save(project_id, updated, expected_version, config.version)

    async def set_config(self, project_id: str, request: LevelingConfigRequest) -> LevelingOutcome:
        """Replace the whole baseline set."""
        keys = [b.item_key for b in request.leveling.baselines]
        if len(keys) != len(set(keys)):
            return LevelingError(error="invalid_baseline", message="Each item may have only one baseline")
        if any(not b.is_usable for b in request.leveling.baselines):
            return LevelingError(error="invalid_baseline", message="Baseline quantity must be greater than zero")

        config = await self.store.get_leveling(project_id)
        if config is None:
            return _not_found(project_id)
        return await self._save(project_id, request.leveling, request.expected_version, config.version)

    async def clear(self, project_id: str, expected_version: Optional[int] = None) -> LevelingOutcome:
        config = await self.store.get_leveling(project_id)
        if config is None:
            return _not_found(project_id)
        return await self._save(project_id, LevelingConfig(enabled=False), expected_version, config.version)

    async def _save(
        self,
        project_id: str,
        config: LevelingConfig,
        expected_version: Optional[int],
        read_version: int,
    ) -> LevelingOutcome:
        version = expected_version if expected_version is not None else read_version
        saved = await self.store.save_leveling(project_id, config, expected_version=version)
        if saved is None:
            current = await self.store.get_leveling(project_id)
            logger.info("leveling_conflict", project_id=project_id, expected=version)
            return LevelingError(
                error="version_conflict",
                message="Baselines were changed by someone else; reload and retry",
                current_version=current.version if current else None,
            )
        return await self._state(project_id, saved, apply=True)

    async def _state(self, project_id: str, config: LevelingConfig, apply: bool) -> LevelingState:
        items = await self.store.list_items(project_id)
        baselines = config.baselines if config.enabled else []
        result = compute_leveled_totals(items, baselines)

        if apply:
            await self.store.apply_item_leveling(project_id, item_leveling(items, baselines))
            metrics.leveling_recomputes_total.labels(
                ranking_changed=str(result.ranking_changed).lower(),
            ).inc()
            logger.info(
                "leveling_recomputed",
                project_id=project_id,
                version=config.version,
                baselines=len(baselines),
                ranking_changed=result.ranking_changed,
            )

        return LevelingState(project_id=project_id, config=config, result=result)
