"""
Quantity leveling.

A reviewer picks, per normalized item, one contractor's quantity as the
baseline. Each contractor's leveled total then prices that baseline quantity
at their own unit price, so bids that carry different quantities for the
same work compare on equal footing.

Pure functions; the review service persists configs and applies results.
"""

from decimal import Decimal
from typing import Optional

from app.schemas.bids import ExtractedItem
from app.schemas.leveling import ContractorLeveledTotals, ItemBaseline, LevelingResult
from app.schemas.money import ZERO, to_decimal, to_money


def _baseline_index(baselines: list[ItemBaseline]) -> dict[str, ItemBaseline]:
    return {b.item_key: b for b in baselines if b.is_usable}


def match_baseline(item: ExtractedItem, index: dict[str, ItemBaseline]) -> Optional[ItemBaseline]:
    """An item matches a baseline by its description, then its normalized category."""
    baseline = index.get(item.description)
    if baseline is None and item.normalized_category:
        baseline = index.get(item.normalized_category)
    return baseline


def leveled_price(item: ExtractedItem, baseline: Optional[ItemBaseline]) -> Optional[Decimal]:
    """baseline quantity x unit price to the cent, or None when the item cannot be leveled."""
    if baseline is None or item.unit_price is None:
        return None
    return to_money(Decimal(to_decimal(baseline.quantity)) * item.unit_price)


def compute_leveled_totals(
    items_by_contractor: dict[str, list[ExtractedItem]],
    baselines: list[ItemBaseline],
) -> LevelingResult:
    """
    as-bid:  sum of non-exclusion total_price (missing prices count as 0)
    leveled: same items, with leveled_price substituted wherever it exists

    Orders are ascending by total; ties keep contractor order.
    """
    index = _baseline_index(baselines)
    totals = []

    for contractor_id, items in items_by_contractor.items():
        as_bid = ZERO
        leveled = ZERO
        for item in items:
            if item.is_exclusion:
                continue
            price = item.total_price or ZERO
            as_bid += price
            adjusted = leveled_price(item, match_baseline(item, index))
            leveled += adjusted if adjusted is not None else price

        difference = leveled - as_bid
        totals.append(ContractorLeveledTotals(
            contractor_id=contractor_id,
            as_bid_total=to_money(as_bid),
            leveled_total=to_money(leveled),
            difference=to_money(difference),
            percent_difference=float(difference / as_bid * 100) if as_bid else 0.0,
        ))

    as_bid_order = [t.contractor_id for t in sorted(totals, key=lambda t: t.as_bid_total)]
    leveled_order = [t.contractor_id for t in sorted(totals, key=lambda t: t.leveled_total)]

    return LevelingResult(
        totals=totals,
        as_bid_order=as_bid_order,
        leveled_order=leveled_order,
        ranking_changed=as_bid_order != leveled_order,
    )


def item_leveling(
    items_by_contractor: dict[str, list[ExtractedItem]],
    baselines: list[ItemBaseline],
) -> dict[str, tuple[bool, Optional[Decimal]]]:
    """item id -> (is_baseline, leveled_price) for every item with an id."""
    index = _baseline_index(baselines)
    updates = {}
    for contractor_id, items in items_by_contractor.items():
        for item in items:
            if not item.id:
                continue
            baseline = match_baseline(item, index)
            is_baseline = baseline is not None and baseline.contractor_id == contractor_id
            price = None if item.is_exclusion else leveled_price(item, baseline)
            updates[item.id] = (is_baseline, price)
    return updates
