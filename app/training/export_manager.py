"""
Fine-tuning export: approved, high-quality corrections rendered as
chat-format JSONL (one {"messages": [...]} object per line).
"""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

import structlog

from app.config import settings
from app.models.enums import CorrectionType, ModerationStatus
from app.observability import metrics
from app.schemas.training import (
    ChatMessage,
    ExportConfig,
    ExportFailure,
    ExportRecord,
    ExportResult,
    ExportStats,
    FineTuningExample,
    JsonlValidationReport,
    QualityDistribution,
    ReadinessStatus,
    TrainingContribution,
)
from app.store.training_store import TrainingStore
from app.training.quality_scorer import filter_high_quality, score_batch

logger = structlog.get_logger(__name__)

SYSTEM_BASE = (
    "You are an expert construction bid analyst specializing in {trade} work. "
    "Your task is to accurately extract and normalize bid information from subcontractor documents."
)

SYSTEM_BY_TYPE = {
    CorrectionType.DESCRIPTION.value:
        "Focus on extracting clear, standardized descriptions of line items that capture the full scope of work.",
    CorrectionType.CATEGORY.value:
        "Accurately categorize line items according to standard construction divisions and work types.",
    CorrectionType.PRICE.value:
        "Extract and validate pricing information, ensuring all costs are captured correctly.",
    CorrectionType.QUANTITY.value:
        "Extract quantities with appropriate precision and units.",
    CorrectionType.UNIT.value:
        "Identify and standardize units of measurement.",
    CorrectionType.EXCLUSION_FLAG.value:
        "Identify items that are explicitly excluded from the bid scope.",
}

DEFAULT_USER_MESSAGE = "Extract and validate the bid information."


class ExportManager:

    def __init__(self, store: TrainingStore):
        self.store = store

    async def generate_export(self, config: Optional[ExportConfig] = None) -> Union[ExportResult, ExportFailure]:
        """
        Build a JSONL export. Returns ExportFailure when nothing qualifies;
        store read errors propagate.
        """
        config = config or ExportConfig(
            min_quality_score=settings.EXPORT_MIN_QUALITY_SCORE,
            max_examples=settings.EXPORT_MAX_EXAMPLES,
        )

        corrections = await self.store.list_contributions(
            ModerationStatus.APPROVED.value,
            trade_types=config.trade_types,
            correction_types=config.correction_types,
            limit=config.max_examples * 2,
        )
        if not corrections:
            metrics.training_exports_total.labels(outcome="no_approved").inc()
            return ExportFailure(
                error="no_approved_corrections",
                message="No approved corrections found for export",
            )

        scores = score_batch(corrections)
        score_by_id = {s.id: s.score.score for s in scores}
        kept = [
            c for c in filter_high_quality(corrections, scores)
            if score_by_id[c.id] >= config.min_quality_score
        ][:config.max_examples]
        if not kept:
            metrics.training_exports_total.labels(outcome="no_high_quality").inc()
            return ExportFailure(
                error="no_high_quality_corrections",
                message="No high-quality corrections found for export",
            )

        examples = [to_fine_tuning_example(c, config.include_metadata) for c in kept]
        jsonl = "\n".join(
            json.dumps(e.model_dump(), ensure_ascii=False, separators=(",", ":")) for e in examples
        )

        avg_quality = sum(score_by_id[c.id] for c in kept) / len(kept)

        by_trade: dict[str, int] = {}
        by_type: dict[str, int] = {}
        for c in kept:
            by_trade[c.trade_type] = by_trade.get(c.trade_type, 0) + 1
            by_type[c.correction_type] = by_type.get(c.correction_type, 0) + 1

        record = ExportRecord(
            id=str(uuid.uuid4()),
            total_examples=len(kept),
            by_trade_type=by_trade,
            by_correction_type=by_type,
            avg_quality_score=avg_quality,
            config=config.model_dump(),
        )
        try:
            record = await self.store.record_export(record)
        except Exception as e:
            logger.error("export_record_failed", export_id=record.id, error=str(e))

        metrics.training_exports_total.labels(outcome="success").inc()
        metrics.training_examples_exported.set(len(kept))
        logger.info(
            "training_export_generated",
            export_id=record.id,
            total_examples=len(kept),
            considered=len(corrections),
        )

        return ExportResult(
            export_id=record.id,
            total_examples=len(kept),
            by_trade_type=by_trade,
            by_correction_type=by_type,
            avg_quality_score=round(avg_quality, 2),
            jsonl_content=jsonl,
            created_at=record.created_at or datetime.now(timezone.utc),
        )

    async def get_export_stats(self) -> ExportStats:
        approved = await self.store.count_contributions(ModerationStatus.APPROVED.value)
        exports = await self.store.list_exports()

        target = settings.EXPORT_READINESS_TARGET
        return ExportStats(
            total_exports=len(exports),
            total_examples_exported=sum(e.total_examples for e in exports),
            last_export_at=exports[0].created_at if exports else None,
            readiness_status=ReadinessStatus(
                is_ready=approved >= target,
                current_count=approved,
                target_count=target,
                percent_complete=min(100, round(approved / target * 100)),
            ),
        )

    async def get_quality_distribution(self) -> QualityDistribution:
        corrections = await self.store.list_contributions(ModerationStatus.APPROVED.value)
        if not corrections:
            return QualityDistribution()

        score_by_id = {s.id: s.score.score for s in score_batch(corrections)}
        dist = QualityDistribution(total=len(corrections))

        for c in corrections:
            score = score_by_id[c.id]
            if score >= 0.8:
                dist.high_quality += 1
            elif score >= 0.6:
                dist.medium_quality += 1
            else:
                dist.low_quality += 1

            trade = dist.by_trade_type.setdefault(c.trade_type, {"total": 0, "high_quality": 0})
            trade["total"] += 1
            if score >= 0.8:
                trade["high_quality"] += 1

        return dist


# ── Example rendering ────────────────────────────────────────

def to_fine_tuning_example(correction: TrainingContribution, include_metadata: bool = False) -> FineTuningExample:
    system = build_system_prompt(correction.trade_type, correction.correction_type)
    if include_metadata:
        system = f"{system}\n\n[Metadata: trade={correction.trade_type}, type={correction.correction_type}]"

    return FineTuningExample(messages=[
        ChatMessage(role="system", content=system),
        ChatMessage(role="user", content=build_user_message(correction)),
        ChatMessage(role="assistant", content=build_assistant_message(correction)),
    ])


def build_system_prompt(trade_type: str, correction_type: str) -> str:
    return f"{SYSTEM_BASE.format(trade=trade_type)} {SYSTEM_BY_TYPE.get(correction_type, '')}"


def build_user_message(correction: TrainingContribution) -> str:
    parts = []
    if correction.raw_text_snippet:
        parts.append(f"Extract information from the following bid text:\n\n{correction.raw_text_snippet}")
    if correction.original_value:
        parts.append(
            f"\nInitial extraction (may need correction):\n{json.dumps(correction.original_value, indent=2)}"
        )
    return "\n".join(parts) or DEFAULT_USER_MESSAGE


def build_assistant_message(correction: TrainingContribution) -> str:
    value = correction.corrected_value
    kind = correction.correction_type

    if kind == CorrectionType.DESCRIPTION.value:
        return value.get("text") or json.dumps(value)
    if kind == CorrectionType.CATEGORY.value:
        return value.get("value") or json.dumps(value)
    if kind == CorrectionType.PRICE.value:
        return f"Total price: {_render(value.get('total_price'))}"
    if kind == CorrectionType.QUANTITY.value:
        return f"Quantity: {_render(value.get('value'))}"
    if kind == CorrectionType.UNIT.value:
        return f"Unit: {_render(value.get('value'))}"
    if kind == CorrectionType.EXCLUSION_FLAG.value:
        if value.get("value"):
            return "This item is EXCLUDED from the bid scope."
        return "This item is INCLUDED in the bid scope."
    return json.dumps(value)


def _render(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


# ── Validation ───────────────────────────────────────────────

def validate_jsonl(content: str) -> JsonlValidationReport:
    """Check chat-format JSONL line by line. Blank lines are ignored."""
    errors: list[str] = []
    lines = [line for line in content.split("\n") if line.strip()]

    for n, line in enumerate(lines, start=1):
        try:
            example = json.loads(line)
        except json.JSONDecodeError:
            errors.append(f"Line {n}: Invalid JSON")
            continue

        messages = example.get("messages") if isinstance(example, dict) else None
        if not isinstance(messages, list):
            errors.append(f"Line {n}: Missing or invalid 'messages' array")
            continue

        roles = [m.get("role") if isinstance(m, dict) else None for m in messages]
        if "system" not in roles and "user" not in roles:
            errors.append(f"Line {n}: Missing system or user message")
        if "assistant" not in roles:
            errors.append(f"Line {n}: Missing assistant message")

        for j, message in enumerate(messages, start=1):
            body = message.get("content") if isinstance(message, dict) else None
            if not body or not isinstance(body, str):
                errors.append(f"Line {n}, Message {j}: Invalid or missing content")

    return JsonlValidationReport(is_valid=not errors, errors=errors, example_count=len(lines))
