"""
Core comparison records: projects, bid documents and extracted line items.
These are the shapes the pipeline reads from and writes to the store.
"""

from typing import Optional

from pydantic import BaseModel, Field

from app.models.enums import DocumentStatus, ProjectStatus
from app.schemas.money import Money


class BidDocument(BaseModel):
    """One uploaded file from one contractor."""
    id: str
    project_id: str
    contractor_name: str
    file_name: str = ""
    file_type: str
    file_uri: str = ""
    file_size: int = 0
    raw_text: Optional[str] = None
    upload_status: DocumentStatus = DocumentStatus.UPLOADING
    error_message: Optional[str] = None

    model_config = {"from_attributes": True}


class ExtractedItem(BaseModel):
    """
    One line item within one document.

    Invariant: needs_review is true iff confidence_score < 0.7.
    """
    id: Optional[str] = None
    bid_document_id: str
    description: str
    quantity: Optional[float] = None
    unit: Optional[str] = None
    unit_price: Optional[Money] = None
    total_price: Optional[Money] = None
    category: str = "other"
    normalized_category: Optional[str] = None
    is_exclusion: bool = False
    is_inclusion: bool = False
    confidence_score: float = Field(ge=0.0, le=1.0, default=1.0)
    needs_review: bool = False
    raw_text: Optional[str] = None
    ai_notes: Optional[str] = None
    user_modified: bool = False
    is_baseline: bool = False
    leveled_price: Optional[Money] = None

    model_config = {"from_attributes": True}


class Project(BaseModel):
    """A comparison request: several bid documents for one trade."""
    id: str
    name: str = ""
    trade_type: str
    status: ProjectStatus = ProjectStatus.UPLOADING
    error_message: Optional[str] = None
    documents: list[BidDocument] = []

    model_config = {"from_attributes": True}
