"""
Derives learned patterns from approved corrections.

description corrections -> terminology rewrites
category corrections    -> category rules
exclusion flag flips    -> extraction rules

Candidates are counted across corrections and compared with stored
patterns; a pattern seen PATTERN_AUTO_PROMOTE_THRESHOLD times is activated.
"""

import json
import re
from typing import Any, Optional

import structlog

from app.config import settings
from app.models.enums import CorrectionType, ModerationStatus, RefinementType
from app.schemas.training import (
    LearnedPattern,
    PatternAnalysisResult,
    PatternSaveSummary,
    PatternValue,
    TrainingContribution,
)
from app.store.training_store import TrainingStore

logger = structlog.get_logger(__name__)

_SPECIAL_CHARS_RE = re.compile(r"[^\w\s-]", re.ASCII)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_pattern_key(text: str) -> str:
    """lower-case, strip punctuation except '-', whitespace to '_', max 50 chars."""
    key = _SPECIAL_CHARS_RE.sub("", text.lower().strip())
    return _WHITESPACE_RE.sub("_", key)[:50]


def _string_value(obj: dict, key: str) -> Optional[str]:
    value: Any = obj.get(key)
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return None


def _identity(p: LearnedPattern) -> tuple[str, str, str]:
    return (p.trade_type, p.refinement_type.value, p.pattern_key)


def extract_patterns(correction: TrainingContribution) -> list[LearnedPattern]:
    """Zero or one candidate pattern from a single correction."""
    kind = correction.correction_type

    if kind == CorrectionType.DESCRIPTION.value:
        original = _string_value(correction.original_value, "text")
        corrected = _string_value(correction.corrected_value, "text")
        if original and corrected and original != corrected:
            return [LearnedPattern(
                trade_type=correction.trade_type,
                refinement_type=RefinementType.TERMINOLOGY,
                pattern_key=normalize_pattern_key(original),
                pattern_value=PatternValue(from_=original, to=corrected),
            )]

    elif kind == CorrectionType.CATEGORY.value:
        original = _string_value(correction.original_value, "value")
        corrected = _string_value(correction.corrected_value, "value")
        if original and corrected and original != corrected:
            return [LearnedPattern(
                trade_type=correction.trade_type,
                refinement_type=RefinementType.CATEGORY_RULE,
                pattern_key=normalize_pattern_key(original),
                pattern_value=PatternValue(from_=original, to=corrected),
            )]

    elif kind == CorrectionType.EXCLUSION_FLAG.value:
        original = correction.original_value.get("value")
        corrected = correction.corrected_value.get("value")
        if isinstance(original, bool) and isinstance(corrected, bool):
            before, after = str(original).lower(), str(corrected).lower()
            return [LearnedPattern(
                trade_type=correction.trade_type,
                refinement_type=RefinementType.EXTRACTION_RULE,
                pattern_key=f"exclusion_{before}_to_{after}",
                pattern_value=PatternValue(
                    from_=before, to=after, context="exclusion flag correction",
                ),
            )]

    return []


async def analyze_patterns(
    store: TrainingStore,
    trade_type: Optional[str] = None,
    threshold: int = settings.PATTERN_AUTO_PROMOTE_THRESHOLD,
) -> PatternAnalysisResult:
    try:
        corrections = await store.list_contributions(
            ModerationStatus.APPROVED.value,
            trade_types=[trade_type] if trade_type else None,
        )
        existing = {_identity(p): p for p in await store.list_patterns()}
    except Exception as e:
        logger.error("pattern_analysis_fetch_failed", trade_type=trade_type, error=str(e))
        return PatternAnalysisResult()

    candidates: dict[tuple[str, str, str], LearnedPattern] = {}
    for correction in corrections:
        for pattern in extract_patterns(correction):
            key = _identity(pattern)
            if key in candidates:
                candidates[key].occurrence_count += 1
            else:
                candidates[key] = pattern

    result = PatternAnalysisResult()
    for key, candidate in candidates.items():
        stored = existing.get(key)
        if stored is None:
            result.new_patterns.append(candidate)
            if candidate.occurrence_count >= threshold:
                result.promoted_patterns.append(candidate)
        elif candidate.occurrence_count > stored.occurrence_count:
            result.updated_patterns.append(candidate)
            if not stored.is_active and candidate.occurrence_count >= threshold:
                result.promoted_patterns.append(candidate)

    logger.info(
        "pattern_analysis_complete",
        trade_type=trade_type,
        corrections=len(corrections),
        new=len(result.new_patterns),
        updated=len(result.updated_patterns),
        promoted=len(result.promoted_patterns),
    )
    return result


async def save_patterns(store: TrainingStore, result: PatternAnalysisResult) -> PatternSaveSummary:
    promoted_keys = {_identity(p) for p in result.promoted_patterns}
    summary = PatternSaveSummary()

    batch = [(p, True) for p in result.new_patterns] + [(p, False) for p in result.updated_patterns]
    for pattern, is_new in batch:
        promote = _identity(pattern) in promoted_keys
        try:
            await store.upsert_pattern(pattern, promote=promote)
        except Exception as e:
            logger.error("pattern_save_failed", pattern_key=pattern.pattern_key, error=str(e))
            continue

        if is_new:
            summary.inserted += 1
        else:
            summary.updated += 1
        if promote:
            summary.promoted += 1

    return summary


async def run_pattern_analysis(store: TrainingStore, trade_type: Optional[str] = None) -> PatternSaveSummary:
    """Analyze and persist in one pass."""
    result = await analyze_patterns(store, trade_type)
    analyzed = len(result.new_patterns) + len(result.updated_patterns)
    if analyzed == 0:
        return PatternSaveSummary()

    summary = await save_patterns(store, result)
    summary.analyzed = analyzed
    return summary
