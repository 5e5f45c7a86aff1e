"""
Leveling shapes: reviewer-chosen baselines and the totals derived from them.
"""

from typing import Literal, Optional

from pydantic import BaseModel

from app.schemas.money import Money


class ItemBaseline(BaseModel):
    """Reference quantity for one normalized item, chosen from one contractor."""
    item_key: str
    contractor_id: str
    quantity: Optional[float] = None
    unit: Optional[str] = None

    @property
    def is_usable(self) -> bool:
        return self.quantity is not None and self.quantity > 0


class ContractorLeveledTotals(BaseModel):
    contractor_id: str
    as_bid_total: Money
    leveled_total: Money
    difference: Money
    percent_difference: float


class LevelingResult(BaseModel):
    totals: list[ContractorLeveledTotals]
    as_bid_order: list[str]
    leveled_order: list[str]
    ranking_changed: bool


class LevelingConfig(BaseModel):
    """Persisted baseline set for a project. version increases on every write."""
    enabled: bool = True
    baselines: list[ItemBaseline] = []
    version: int = 0

    def get(self, item_key: str) -> Optional[ItemBaseline]:
        for b in self.baselines:
            if b.item_key == item_key:
                return b
        return None


class LevelingState(BaseModel):
    """What the leveling service hands back after any edit."""
    project_id: str
    config: LevelingConfig
    result: LevelingResult


class BaselineRequest(BaseModel):
    contractor_id: str
    quantity: float
    unit: Optional[str] = None
    expected_version: Optional[int] = None


class LevelingConfigRequest(BaseModel):
    leveling: LevelingConfig
    expected_version: Optional[int] = None


class LevelingError(BaseModel):
    """Explicit failure returned by the leveling service instead of raising."""
    error: Literal["not_found", "invalid_baseline", "version_conflict"]
    message: str
    current_version: Optional[int] = None
