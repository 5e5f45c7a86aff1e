"""
Normalization stage: cross-contractor scope matching.

The model proposes matched groups; reconcile() then enforces the rules
downstream code relies on:

- every contractor has exactly one entry per group
- each item is linked from at most one group, and only by its own contractor
- $0, TBD, NIC and "By Others" items and exclusion-flagged items count as excluded
- a group is a scope gap iff some contractor does not include it
- items the model left unmatched get a group of their own

If the completion or its decoding fails, the same reconciliation runs over
an empty proposal, so each item becomes its own group and the comparison
can still finish.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Optional

import structlog

from app.errors import CompletionError
from app.llm.gateway import CompletionGateway
from app.llm.prompts import normalization_messages
from app.models.enums import PipelineStage, ScopeStatus
from app.observability import metrics
from app.pipeline.decoding import decode
from app.schemas.bids import ExtractedItem
from app.schemas.stages import ContractorEntry, NormalizationOutput, NormalizedScopeItem

logger = structlog.get_logger(__name__)

_EXCLUSION_MARKERS_RE = re.compile(r"(?<!\w)(?:nic|n\.i\.c\.?|tbd|t\.b\.d\.?|by\s+others)(?!\w)", re.IGNORECASE)


@dataclass
class ContractorBid:
    """One readable bid as the matcher sees it."""
    id: str
    name: str
    items: list[ExtractedItem] = field(default_factory=list)


@dataclass
class NormalizationOutcome:
    output: NormalizationOutput
    match_rate: float
    duration_ms: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def gap_count(self) -> int:
        return sum(1 for g in self.output.normalized_items if g.is_scope_gap)


def is_excluded_item(item: ExtractedItem) -> bool:
    if item.is_exclusion or item.total_price == 0:
        return True
    return bool(_EXCLUSION_MARKERS_RE.search(item.description))


def compute_match_rate(groups: list[NormalizedScopeItem], total_items: int) -> float:
    """Share of extracted items that landed in a fully-matched group."""
    if total_items <= 0:
        return 0.0
    return sum(1 for g in groups if not g.is_scope_gap) / total_items


def normalized_categories(output: NormalizationOutput) -> dict[str, str]:
    """item id -> normalized description of the group that links it."""
    mapping = {}
    for group in output.normalized_items:
        for entry in group.contractors:
            if entry.original_item_id:
                mapping[entry.original_item_id] = group.normalized_description
    return mapping


def _gap_note(entries: list[ContractorEntry]) -> str:
    excluded = [e.contractor_name or e.contractor_id for e in entries if e.status == ScopeStatus.EXCLUDED]
    missing = [e.contractor_name or e.contractor_id for e in entries if e.status == ScopeStatus.NOT_MENTIONED]
    parts = []
    if excluded:
        parts.append(f"Excluded by {', '.join(excluded)}.")
    if missing:
        parts.append(f"Not mentioned by {', '.join(missing)}.")
    return " ".join(parts)


def _group(description: str, category: str, entries: list[ContractorEntry], notes: Optional[str]) -> NormalizedScopeItem:
    gap = any(e.status != ScopeStatus.INCLUDED for e in entries)
    return NormalizedScopeItem(
        normalized_description=description,
        category=category or "other",
        contractors=entries,
        is_scope_gap=gap,
        gap_notes=(notes or _gap_note(entries)) if gap else None,
    )


def _entry(
    proposed: Optional[ContractorEntry],
    bid: ContractorBid,
    own_items: dict[str, ExtractedItem],
    used: set[str],
) -> ContractorEntry:
    if proposed is None:
        return ContractorEntry(contractor_id=bid.id, contractor_name=bid.name)

    item = None
    link = proposed.original_item_id
    if link and link in own_items and link not in used:
        item = own_items[link]
        used.add(link)

    status = proposed.status
    if item is not None and status == ScopeStatus.NOT_MENTIONED:
        status = ScopeStatus.INCLUDED

    price = proposed.price
    if price is None and item is not None:
        price = item.total_price

    if status == ScopeStatus.INCLUDED:
        if item is not None and is_excluded_item(item):
            status = ScopeStatus.EXCLUDED
        elif price == 0 or _EXCLUSION_MARKERS_RE.search(proposed.original_description or ""):
            status = ScopeStatus.EXCLUDED

    if status == ScopeStatus.NOT_MENTIONED:
        return ContractorEntry(contractor_id=bid.id, contractor_name=bid.name)

    return ContractorEntry(
        contractor_id=bid.id,
        contractor_name=bid.name,
        status=status,
        price=price,
        original_description=proposed.original_description or (item.description if item else None),
        original_item_id=item.id if item else None,
    )


def reconcile(proposal: NormalizationOutput, bids: list[ContractorBid]) -> NormalizationOutput:
    items_by_bid = {b.id: {i.id: i for i in b.items if i.id} for b in bids}
    used: set[str] = set()
    groups = []

    for proposed in proposal.normalized_items:
        entries = [_entry(proposed.entry_for(b.id), b, items_by_bid[b.id], used) for b in bids]
        if all(e.status == ScopeStatus.NOT_MENTIONED for e in entries):
            continue
        groups.append(_group(proposed.normalized_description, proposed.category, entries, proposed.gap_notes))

    unmatched = 0
    for bid in bids:
        for item in bid.items:
            if item.id in used:
                continue
            unmatched += 1
            if item.id:
                used.add(item.id)
            entries = []
            for other in bids:
                if other.id != bid.id:
                    entries.append(ContractorEntry(contractor_id=other.id, contractor_name=other.name))
                    continue
                entries.append(ContractorEntry(
                    contractor_id=bid.id,
                    contractor_name=bid.name,
                    status=ScopeStatus.EXCLUDED if is_excluded_item(item) else ScopeStatus.INCLUDED,
                    price=item.total_price,
                    original_description=item.description,
                    original_item_id=item.id,
                ))
            groups.append(_group(item.description, item.category, entries, None))

    if unmatched:
        logger.info("normalization_unmatched_items", count=unmatched)

    return NormalizationOutput(normalized_items=groups, normalization_notes=proposal.normalization_notes)


def bid_payload(bids: list[ContractorBid]) -> list[dict]:
    return [
        {
            "contractor_id": b.id,
            "contractor_name": b.name,
            "items": [
                {
                    "id": i.id,
                    "description": i.description,
                    "total_price": i.total_price,
                    "category": i.category,
                    "is_exclusion": i.is_exclusion,
                }
                for i in b.items
            ],
        }
        for b in bids
    ]


class NormalizationStage:

    def __init__(self, gateway: CompletionGateway):
        self.gateway = gateway

    async def run(
        self,
        trade_type: str,
        bids: list[ContractorBid],
        examples: str = "",
        variant: str = "",
    ) -> NormalizationOutcome:
        start = time.monotonic()
        proposal = NormalizationOutput()
        error = None

        try:
            response = await self.gateway.complete(
                normalization_messages(trade_type, bid_payload(bids), examples, variant),
                response_format={"type": "json_object"},
            )
            decoded = decode(response, NormalizationOutput)
            if decoded.ok:
                proposal = decoded.value
            else:
                error = decoded.error
                metrics.pipeline_stage_decode_failures_total.labels(stage=PipelineStage.NORMALIZATION.value).inc()
        except CompletionError as e:
            error = e.message

        if error:
            logger.warning("normalization_fallback", error=error)

        output = reconcile(proposal, bids)
        total_items = sum(len(b.items) for b in bids)
        match_rate = compute_match_rate(output.normalized_items, total_items)

        duration = time.monotonic() - start
        metrics.pipeline_stage_duration_seconds.labels(stage=PipelineStage.NORMALIZATION.value).observe(duration)
        logger.info(
            "normalization_complete",
            groups=len(output.normalized_items),
            total_items=total_items,
            match_rate=round(match_rate, 3),
        )
        return NormalizationOutcome(
            output=output, match_rate=match_rate, duration_ms=int(duration * 1000), error=error,
        )
