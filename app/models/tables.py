"""
SQLAlchemy ORM models.
JSON columns use JSONB on PostgreSQL and plain JSON elsewhere.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.database import Base

JsonType = JSON().with_variant(JSONB(), "postgresql")


def _uuid() -> str:
    return str(uuid.uuid4())


# ────────────────────────────────────────────────────────────
# PROJECTS (one comparison request)
# ────────────────────────────────────────────────────────────
class ProjectRow(Base):
    __tablename__ = "projects"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    trade_type: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="uploading")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    documents = relationship(
        "BidDocumentRow", back_populates="project", cascade="all, delete-orphan",
        order_by="BidDocumentRow.created_at",
    )
    comparison = relationship(
        "ComparisonResultRow", back_populates="project", uselist=False, cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index("idx_projects_status", "status"),
    )


# ────────────────────────────────────────────────────────────
# BID DOCUMENTS
# ────────────────────────────────────────────────────────────
class BidDocumentRow(Base):
    __tablename__ = "bid_documents"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False
    )
    contractor_name: Mapped[str] = mapped_column(Text, nullable=False)
    file_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_type: Mapped[str] = mapped_column(Text, nullable=False)
    file_uri: Mapped[str] = mapped_column(Text, nullable=False, default="")
    file_size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    raw_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    upload_status: Mapped[str] = mapped_column(String(20), nullable=False, default="uploading")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    project = relationship("ProjectRow", back_populates="documents")
    items = relationship("ExtractedItemRow", back_populates="document", cascade="all, delete-orphan")

    __table_args__ = (
        Index("idx_bid_documents_project", "project_id"),
    )


# ────────────────────────────────────────────────────────────
# EXTRACTED ITEMS
# ────────────────────────────────────────────────────────────
class ExtractedItemRow(Base):
    __tablename__ = "extracted_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    bid_document_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("bid_documents.id", ondelete="CASCADE"), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    quantity: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    unit: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    unit_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 4), nullable=True)
    total_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="other")
    normalized_category: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    is_exclusion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_inclusion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    raw_text: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    ai_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    user_modified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_baseline: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    leveled_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    document = relationship("BidDocumentRow", back_populates="items")

    __table_args__ = (
        Index("idx_extracted_items_document", "bid_document_id"),
    )


# ────────────────────────────────────────────────────────────
# COMPARISON RESULTS (one per project, upserted)
# ────────────────────────────────────────────────────────────
class ComparisonResultRow(Base):
    __tablename__ = "comparison_results"

    project_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True
    )
    total_bids: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    price_low: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    price_high: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    price_average: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    total_scope_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    common_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gap_items: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    summary_json: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)
    recommendation_json: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)
    leveling_json: Mapped[Optional[dict]] = mapped_column(JsonType, nullable=True)
    leveling_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )

    project = relationship("ProjectRow", back_populates="comparison")


# ────────────────────────────────────────────────────────────
# TRAINING CONTRIBUTIONS
# ────────────────────────────────────────────────────────────
class TrainingContributionRow(Base):
    __tablename__ = "training_contributions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    trade_type: Mapped[str] = mapped_column(String(64), nullable=False)
    correction_type: Mapped[str] = mapped_column(String(32), nullable=False)
    original_value: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    corrected_value: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    raw_text_snippet: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    confidence_score_original: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    moderation_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_contributions_trade_status", "trade_type", "moderation_status"),
    )


# ────────────────────────────────────────────────────────────
# PROMPT VARIANTS
# ────────────────────────────────────────────────────────────
class PromptVariantRow(Base):
    __tablename__ = "prompt_variants"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    trade_type: Mapped[str] = mapped_column(String(64), nullable=False)
    pipeline_stage: Mapped[str] = mapped_column(String(32), nullable=False)
    variant_name: Mapped[str] = mapped_column(Text, nullable=False)
    variant_content: Mapped[str] = mapped_column(Text, nullable=False)
    is_control: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    total_runs: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_corrections: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_confidence: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    correction_rate: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    avg_extraction_time_ms: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        Index("idx_variants_trade_stage", "trade_type", "pipeline_stage"),
    )


# ────────────────────────────────────────────────────────────
# LEARNED PATTERNS
# ────────────────────────────────────────────────────────────
class LearnedPatternRow(Base):
    __tablename__ = "learned_patterns"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    trade_type: Mapped[str] = mapped_column(String(64), nullable=False)
    refinement_type: Mapped[str] = mapped_column(String(32), nullable=False)
    pattern_key: Mapped[str] = mapped_column(String(64), nullable=False)
    pattern_value: Mapped[dict] = mapped_column(JsonType, nullable=False)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_promoted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("trade_type", "refinement_type", "pattern_key", name="uq_pattern_key"),
    )


# ────────────────────────────────────────────────────────────
# FINE-TUNING EXPORTS
# ────────────────────────────────────────────────────────────
class FineTuningExportRow(Base):
    __tablename__ = "fine_tuning_exports"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    total_examples: Mapped[int] = mapped_column(Integer, nullable=False)
    by_trade_type: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    by_correction_type: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    avg_quality_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    config: Mapped[dict] = mapped_column(JsonType, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


# ────────────────────────────────────────────────────────────
# PIPELINE METRICS (anonymised, no project link)
# ────────────────────────────────────────────────────────────
class PipelineMetricsRow(Base):
    __tablename__ = "ai_pipeline_metrics"

    pipeline_run_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    payload: Mapped[dict] = mapped_column(JsonType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
