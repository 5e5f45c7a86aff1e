"""
Approved-correction examples rendered into prompt augmentation text.

Fetching is best-effort: a store failure yields no examples and the
prompts run unaugmented.
"""

import json
from collections import Counter
from typing import Any

import structlog

from app.config import settings
from app.models.enums import CorrectionType, ModerationStatus
from app.schemas.training import TrainingContribution
from app.store.training_store import TrainingStore

logger = structlog.get_logger(__name__)


def _value_text(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        for key in ("text", "value"):
            if isinstance(value.get(key), str):
                return value[key]
    return json.dumps(value, default=str)


async def get_trade_examples(
    store: TrainingStore, trade_type: str, limit: int = settings.EXAMPLES_LIMIT,
) -> list[TrainingContribution]:
    """Most recent approved corrections for a trade."""
    try:
        return await store.list_contributions(
            ModerationStatus.APPROVED.value, trade_types=[trade_type], limit=limit,
        )
    except Exception as e:
        logger.warning("trade_examples_fetch_failed", trade_type=trade_type, error=str(e))
        return []


def format_extraction_examples(examples: list[TrainingContribution]) -> str:
    descriptions = [e for e in examples if e.correction_type == CorrectionType.DESCRIPTION.value]
    categories = [e for e in examples if e.correction_type == CorrectionType.CATEGORY.value]
    prices = [e for e in examples if e.correction_type == CorrectionType.PRICE.value]

    sections = []
    if descriptions:
        lines = "\n".join(
            f'  - "{_value_text(e.original_value)}" → "{_value_text(e.corrected_value)}"'
            for e in descriptions[:3]
        )
        sections.append(f"Description corrections (how to standardize wording):\n{lines}")

    if categories:
        lines = "\n".join(
            f'  - "{_value_text(e.original_value)}" should be categorized as "{_value_text(e.corrected_value)}"'
            for e in categories[:3]
        )
        sections.append(f"Category corrections:\n{lines}")

    if prices:
        lines = []
        for e in prices[:2]:
            context = f' (from: "{e.raw_text_snippet[:100]}...")' if e.raw_text_snippet else ""
            lines.append(f"  - Watch for ambiguous pricing formats{context}")
        sections.append("Price extraction notes:\n" + "\n".join(lines))

    if not sections:
        return ""

    body = "\n\n".join(sections)
    return (
        "\nLEARNED CORRECTIONS FOR THIS TRADE TYPE:\n"
        "Based on reviewed corrections from past analyses:\n\n"
        f"{body}\n\n"
        "Apply these patterns when extracting similar items.\n"
    )


def format_normalization_examples(examples: list[TrainingContribution]) -> str:
    descriptions = [e for e in examples if e.correction_type == CorrectionType.DESCRIPTION.value]
    if not descriptions:
        return ""

    lines = "\n".join(
        f'  - "{_value_text(e.original_value)}" normalizes to "{_value_text(e.corrected_value)}"'
        for e in descriptions[:5]
    )
    return (
        "\nLEARNED NORMALIZATION PATTERNS FOR THIS TRADE:\n"
        "Apply these standard naming conventions:\n\n"
        f"{lines}\n\n"
        "Use these as reference for normalizing similar scope items.\n"
    )


async def common_extraction_errors(store: TrainingStore, trade_type: str) -> list[dict]:
    """Top 10 recurring (correction type, original value) pairs for a trade."""
    try:
        contributions = await store.list_contributions(
            ModerationStatus.APPROVED.value, trade_types=[trade_type],
        )
    except Exception as e:
        logger.warning("common_errors_fetch_failed", trade_type=trade_type, error=str(e))
        return []

    counts: Counter[str] = Counter()
    for c in contributions:
        original = c.original_value.get("text") if isinstance(c.original_value, dict) else None
        label = original[:50] if isinstance(original, str) else "obj"
        counts[f"{c.correction_type}:{label}"] += 1

    return [{"pattern": p, "frequency": n} for p, n in counts.most_common(10)]
