"""
Quality scoring for user corrections.
Weighted heuristic over four factors; only high-quality corrections
(score >= 0.8) become fine-tuning examples.
"""

import json
from typing import Any, Iterable, Optional, TypeVar

from app.models.enums import CorrectionType
from app.schemas.training import QualityFactors, QualityScore, ScoredCorrection, TrainingContribution

# ── Weights ──────────────────────────────────────────────────
QUALITY_WEIGHTS = {
    "clarity": 0.30,
    "completeness": 0.25,
    "consistency": 0.25,
    "specificity": 0.20,
}

HIGH_QUALITY_THRESHOLD = 0.8
GENERIC_TERMS = ("item", "thing", "stuff", "misc", "other")

T = TypeVar("T")


def score_correction(correction: TrainingContribution) -> QualityScore:
    """Score one correction's usefulness as a training example."""
    notes: list[str] = []

    factors = QualityFactors(
        clarity=_score_clarity(correction, notes),
        completeness=_score_completeness(correction, notes),
        consistency=_score_consistency(correction, notes),
        specificity=_score_specificity(correction, notes),
    )

    score = (
        QUALITY_WEIGHTS["clarity"] * factors.clarity
        + QUALITY_WEIGHTS["completeness"] * factors.completeness
        + QUALITY_WEIGHTS["consistency"] * factors.consistency
        + QUALITY_WEIGHTS["specificity"] * factors.specificity
    )

    return QualityScore(
        score=round(score, 2),
        factors=factors,
        is_high_quality=score >= HIGH_QUALITY_THRESHOLD,
        notes=notes,
    )


def score_batch(corrections: Iterable[TrainingContribution]) -> list[ScoredCorrection]:
    return [ScoredCorrection(id=c.id, score=score_correction(c)) for c in corrections]


def filter_high_quality(corrections: list[T], scores: list[ScoredCorrection]) -> list[T]:
    """Keep the corrections whose score is high quality, in input order."""
    keep = {s.id for s in scores if s.score.is_high_quality}
    return [c for c in corrections if c.id in keep]


# ── Factors ──────────────────────────────────────────────────

def _score_clarity(c: TrainingContribution, notes: list[str]) -> float:
    if _serialize(c.original_value) == _serialize(c.corrected_value):
        notes.append("Original and corrected values are identical")
        return 0.0

    score = 1.0

    if c.correction_type == CorrectionType.DESCRIPTION.value:
        original = _text(c.original_value, "text") or ""
        corrected = _text(c.corrected_value, "text") or ""

        if character_similarity(original, corrected) > 0.95:
            score -= 0.3
            notes.append("Very minor text change (possibly just typo)")
        if len(corrected) < 5:
            score -= 0.4
            notes.append("Corrected description is very short")

    elif c.correction_type == CorrectionType.PRICE.value:
        original = c.original_value.get("total_price")
        corrected = c.corrected_value.get("total_price")
        if _is_number(original) and _is_number(corrected):
            diff = abs(original - corrected)
            percent = diff / original if original > 0 else 1
            if percent < 0.01:
                score -= 0.3
                notes.append("Price change is less than 1%")

    return max(0.0, score)


def _score_completeness(c: TrainingContribution, notes: list[str]) -> float:
    score = 1.0

    if not c.raw_text_snippet:
        score -= 0.2
        notes.append("Missing raw text context")

    if c.correction_type == CorrectionType.DESCRIPTION.value:
        if not _has(c.original_value, "text"):
            score -= 0.3
            notes.append("Missing original text")
        if not _has(c.corrected_value, "text"):
            score -= 0.3
            notes.append("Missing corrected text")

    elif c.correction_type == CorrectionType.CATEGORY.value:
        if not _has(c.original_value, "value"):
            score -= 0.3
            notes.append("Missing original category")
        if not _has(c.corrected_value, "value"):
            score -= 0.3
            notes.append("Missing corrected category")

    elif c.correction_type == CorrectionType.PRICE.value:
        if not _has(c.original_value, "total_price"):
            score -= 0.2
        if not _has(c.corrected_value, "total_price"):
            score -= 0.2

    return max(0.0, score)


def _score_consistency(c: TrainingContribution, notes: list[str]) -> float:
    score = 1.0
    original, corrected = c.original_value, c.corrected_value

    common = [k for k in original if k in corrected]
    if not common and original:
        score -= 0.4
        notes.append("Original and corrected have no common keys")

    for key in common:
        if original[key] is None or corrected[key] is None:
            continue
        if _kind(original[key]) != _kind(corrected[key]):
            score -= 0.2
            notes.append(f"Type mismatch for key: {key}")

    return max(0.0, score)


def _score_specificity(c: TrainingContribution, notes: list[str]) -> float:
    score = 1.0

    if c.confidence_score_original is not None:
        if c.confidence_score_original < 0.6:
            score += 0.1
        elif c.confidence_score_original > 0.9:
            score -= 0.1

    if c.correction_type == CorrectionType.DESCRIPTION.value:
        corrected = _text(c.corrected_value, "text") or ""
        lowered = corrected.lower()
        if any(term in lowered for term in GENERIC_TERMS) and len(corrected) < 20:
            score -= 0.2
            notes.append("Corrected description is generic")

    return min(1.0, max(0.0, score))


# ── Helpers ──────────────────────────────────────────────────

def character_similarity(a: str, b: str) -> float:
    """Share of distinct characters in common, case-insensitive."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    a_chars = set(a.lower())
    b_chars = set(b.lower())
    return len(a_chars & b_chars) / max(len(a_chars), len(b_chars))


def _serialize(value: dict) -> str:
    return json.dumps(value, default=str)


def _text(obj: dict, key: str) -> Optional[str]:
    value = obj.get(key)
    return value if isinstance(value, str) else None


def _has(obj: dict, key: str) -> bool:
    return obj.get(key) is not None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _kind(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"
