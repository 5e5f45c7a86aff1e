"""
Learned-pattern prompt section.

Active patterns for a trade are grouped into terminology rewrites,
category rules and extraction rules. Any fetch failure gives an empty
section; prompts never depend on it.
"""

import structlog

from app.config import settings
from app.models.enums import RefinementType
from app.schemas.training import LearnedPattern
from app.store.training_store import TrainingStore

logger = structlog.get_logger(__name__)


async def get_active_patterns(
    store: TrainingStore, trade_type: str, limit: int = settings.PATTERNS_LIMIT,
) -> list[LearnedPattern]:
    try:
        return await store.list_patterns(trade_type=trade_type, active_only=True, limit=limit)
    except Exception as e:
        logger.warning("active_patterns_fetch_failed", trade_type=trade_type, error=str(e))
        return []


def format_pattern_section(patterns: list[LearnedPattern]) -> str:
    terminology = [p for p in patterns if p.refinement_type == RefinementType.TERMINOLOGY]
    categories = [p for p in patterns if p.refinement_type == RefinementType.CATEGORY_RULE]
    extraction = [p for p in patterns if p.refinement_type == RefinementType.EXTRACTION_RULE]

    sections = []
    if terminology:
        lines = "\n".join(
            f'  - "{p.pattern_value.from_}" should be written as "{p.pattern_value.to}"'
            for p in terminology[:5]
        )
        sections.append(f"Standard terminology for this trade:\n{lines}")

    if categories:
        lines = "\n".join(
            f'  - Items like "{p.pattern_value.from_}" belong in category "{p.pattern_value.to}"'
            for p in categories[:5]
        )
        sections.append(f"Category assignment rules:\n{lines}")

    if extraction:
        lines = "\n".join(
            f"  - {p.pattern_value.context or f'{p.pattern_value.from_} -> {p.pattern_value.to}'}"
            for p in extraction[:3]
        )
        sections.append(f"Extraction rules:\n{lines}")

    if not sections:
        return ""

    body = "\n\n".join(sections)
    return (
        "\nLEARNED PATTERNS FOR THIS TRADE:\n"
        "Based on patterns from verified corrections:\n\n"
        f"{body}\n\n"
        "Apply these patterns when extracting and categorizing items.\n"
    )


async def get_pattern_prompt_section(
    store: TrainingStore, trade_type: str, limit: int = settings.PATTERNS_LIMIT,
) -> str:
    return format_pattern_section(await get_active_patterns(store, trade_type, limit))
