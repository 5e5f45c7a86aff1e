"""
Pydantic request/response schemas for the /api/v1 endpoints.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.schemas.bids import BidDocument
from app.schemas.comparison import ComparisonResult
from app.schemas.training import ExportConfig


# ── Projects ─────────────────────────────────────────────────

class ProjectCreate(BaseModel):
    name: str = ""
    trade_type: str = Field(min_length=1, max_length=64)


class ProjectResponse(BaseModel):
    id: str
    name: str
    trade_type: str
    status: str
    error_message: Optional[str] = None
    documents: list[BidDocument] = []
    comparison: Optional[ComparisonResult] = None


class DocumentUploadResponse(BaseModel):
    """Response after uploading a bid document."""
    doc_id: str
    project_id: str
    contractor_name: str
    file_name: str
    file_size_bytes: int
    doc_hash: str
    status: str


class AnalyzeResponse(BaseModel):
    project_id: str
    status: str
    job_id: Optional[str] = None
    comparison: Optional[ComparisonResult] = None


# ── Jobs ─────────────────────────────────────────────────────

class JobStatus(BaseModel):
    job_id: str
    project_id: str
    status: str
    enqueued_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Any] = None


class QueueStats(BaseModel):
    queue_name: str
    queued: int
    started: int
    finished: int
    failed: int
    deferred: int
    workers: int


# ── Training ─────────────────────────────────────────────────

class ExportRequest(ExportConfig):
    """Export configuration; save_artifact also writes the JSONL under ARTIFACT_ROOT."""
    save_artifact: bool = False


class JsonlValidateRequest(BaseModel):
    content: str


class PatternAnalyzeRequest(BaseModel):
    trade_type: Optional[str] = None


class VariantCreate(BaseModel):
    trade_type: str
    pipeline_stage: str
    name: str
    content: str
    is_control: bool = False
    is_active: bool = False


class VariantPromoteRequest(BaseModel):
    trade_type: str
    pipeline_stage: str
    min_runs: Optional[int] = Field(default=None, ge=1)


class VariantPromoteResponse(BaseModel):
    promoted_variant_id: Optional[str] = None
