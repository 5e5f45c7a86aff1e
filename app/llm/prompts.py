"""
Message builders for the three prompted stages.

Each builder returns role-tagged messages ready for CompletionGateway.complete.
Augmentation blocks (learned patterns, approved examples, variant content)
are appended verbatim; an empty string leaves the prompt unchanged.
"""

import json

from app.schemas.comparison import ContractorSummary, ScopeGap

Messages = list[dict[str, str]]

SYSTEM_ESTIMATOR = (
    "You are a senior construction estimator who reviews subcontractor bids "
    "for general contractors. You answer with a single JSON object and nothing else."
)

TRADE_CHECKLISTS: dict[str, list[str]] = {
    "electrical": [
        "Rough-in wiring and conduit", "Service entrance and panels", "Lighting fixtures and devices",
        "Low voltage and data", "Fire alarm", "Temporary power", "Permits and inspections",
        "Testing and commissioning",
    ],
    "plumbing": [
        "Domestic water piping", "Drain, waste and vent", "Fixtures", "Water heaters",
        "Gas piping", "Backflow prevention", "Excavation and trenching", "Permits and inspections",
    ],
    "hvac": [
        "Equipment (RTUs, splits, boilers)", "Ductwork", "Refrigerant and hydronic piping",
        "Controls", "Insulation", "Test and balance", "Start-up", "Permits",
    ],
    "fire protection": [
        "Sprinkler heads and piping", "Fire pump", "Standpipes", "Backflow preventer",
        "Alarm integration", "Hydrostatic testing", "Permits",
    ],
    "roofing": [
        "Tear-off and disposal", "Insulation", "Membrane or shingles", "Flashing and trim",
        "Gutters and downspouts", "Warranty", "Permits",
    ],
    "concrete": [
        "Formwork", "Reinforcement", "Placement", "Finishing", "Curing", "Pumping", "Testing",
    ],
    "drywall/framing": [
        "Metal stud framing", "Board hanging", "Taping and finishing", "Insulation",
        "Fire-rated assemblies", "Acoustical treatment",
    ],
    "painting": [
        "Surface preparation", "Primer", "Finish coats", "Specialty coatings", "Touch-up",
    ],
}

DEFAULT_CHECKLIST = [
    "Labor", "Materials", "Equipment", "Permits", "General conditions", "Overhead and profit",
]


def trade_checklist(trade_type: str) -> str:
    items = TRADE_CHECKLISTS.get(trade_type.strip().lower(), DEFAULT_CHECKLIST)
    return "\n".join(f"- {i}" for i in items)


def extraction_messages(
    trade_type: str,
    document_text: str,
    examples: str = "",
    patterns: str = "",
    variant: str = "",
) -> Messages:
    prompt = f"""Extract every line item, price and exclusion from this {trade_type} bid.

For each item give description, quantity, unit, unit_price, total_price, category
(labor, materials, equipment, permits, general_conditions, overhead, other),
is_exclusion, is_inclusion, confidence_score, raw_text and notes.

Rules:
1. Exclusion sections are often titled "Exclusions", "Not Included", "By Others" or "Clarifications".
2. Items priced $0, "TBD", "NIC" or "By Others" are exclusions.
3. Extract the base bid total when stated.
4. Add-ons, alternates and allowances are separate items.
5. A lump sum without breakdown is still one item.
6. confidence_score: 1.0 explicitly stated, 0.8 reasonably inferred, 0.6 ambiguous, 0.4 significant uncertainty.
7. needs_review is true when confidence_score < 0.7.

Typical {trade_type} scope:
{trade_checklist(trade_type)}
{patterns}{examples}{variant}
Document text:
---
{document_text}
---

Respond with:
{{"contractor_name": str, "base_bid_total": number|null, "items": [{{"description": str,
"quantity": number|null, "unit": str|null, "unit_price": number|null, "total_price": number|null,
"category": str, "is_exclusion": bool, "is_inclusion": bool, "confidence_score": number,
"needs_review": bool, "raw_text": str, "notes": str|null}}], "exclusions_summary": [str],
"inclusions_summary": [str], "extraction_notes": str}}"""

    return [
        {"role": "system", "content": SYSTEM_ESTIMATOR},
        {"role": "user", "content": prompt},
    ]


def normalization_messages(
    trade_type: str,
    contractors: list[dict],
    examples: str = "",
    variant: str = "",
) -> Messages:
    """
    contractors: [{"contractor_id", "contractor_name", "items": [{"id", "description",
    "total_price", "category", "is_exclusion"}]}]
    """
    prompt = f"""Match scope items across these {trade_type} bids so they compare like for like.

Bids:
{json.dumps(contractors, indent=2, default=float)}

For each distinct scope item produce one normalized entry with a standard description,
and for every contractor a status of "included", "excluded" or "not_mentioned", the price
when included, their original wording and the id of the item you matched.

Rules:
- Match by meaning, not wording ("electrical rough" and "rough-in wiring" are the same item).
- "NIC", "By Others", "TBD" and $0 items are exclusions.
- Use each item id at most once.
- An entry is a scope gap when any contractor does not include it; explain why in gap_notes.
{examples}{variant}
Respond with:
{{"normalized_items": [{{"normalized_description": str, "category": str, "contractors": [
{{"contractor_id": str, "contractor_name": str, "status": str, "price": number|null,
"original_description": str|null, "original_item_id": str|null}}], "is_scope_gap": bool,
"gap_notes": str|null}}], "normalization_notes": str}}"""

    return [
        {"role": "system", "content": SYSTEM_ESTIMATOR},
        {"role": "user", "content": prompt},
    ]


def recommendation_messages(
    trade_type: str,
    contractors: list[ContractorSummary],
    scope_gaps: list[ScopeGap],
    variant: str = "",
) -> Messages:
    summary = [
        {
            "id": c.id,
            "name": c.name,
            "base_bid": c.base_bid,
            "exclusions_count": c.exclusion_count,
            "exclusions_value": c.exclusions_value,
            "scope_gaps_count": c.scope_gaps_count,
            "average_confidence": round(c.confidence_avg, 3),
            "estimated_true_cost": c.estimated_true_cost,
        }
        for c in contractors
    ]
    names = {c.id: c.name for c in contractors}
    gaps = [
        {
            "description": g.description,
            "missing_from": [names.get(cid, cid) for cid in g.missing_from + g.excluded_by],
            "estimated_value": g.estimated_value,
        }
        for g in scope_gaps
    ]

    prompt = f"""Recommend one of these {trade_type} subcontractor bids.

Contractors:
{json.dumps(summary, indent=2, default=float)}

Scope gaps:
{json.dumps(gaps, indent=2, default=float)}

Weigh the total cost including the likely value of exclusions and gaps, completeness of
scope, change-order risk from exclusions, and how clearly each bid is written.
The lowest base bid is not automatically the best value.
{variant}
Respond with:
{{"recommended_contractor_id": str, "recommended_contractor_name": str,
"confidence": "high"|"medium"|"low", "reasoning": str,
"key_factors": [{{"factor": str, "description": str}}],
"warnings": [{{"contractor_id": str|null, "type": "exclusion_risk"|"scope_gap"|"price_concern"|"other",
"description": str}}],
"price_analysis": {{"lowest_base_bid": {{"contractor_name": str, "amount": number}},
"estimated_true_cost": [{{"contractor_name": str, "base": number, "estimated_adds": number, "total": number}}]}}}}"""

    return [
        {"role": "system", "content": SYSTEM_ESTIMATOR},
        {"role": "user", "content": prompt},
    ]
