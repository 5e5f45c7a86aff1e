"""
Python enums for the comparison domain.
Values are the lower-case strings stored in the database and returned by the API.
"""

from enum import Enum


class ProjectStatus(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"


class DocumentStatus(str, Enum):
    UPLOADING = "uploading"
    PROCESSING = "processing"
    PROCESSED = "processed"
    ERROR = "error"


class ScopeStatus(str, Enum):
    INCLUDED = "included"
    EXCLUDED = "excluded"
    NOT_MENTIONED = "not_mentioned"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class WarningType(str, Enum):
    EXCLUSION_RISK = "exclusion_risk"
    SCOPE_GAP = "scope_gap"
    PRICE_CONCERN = "price_concern"
    OTHER = "other"


class CorrectionType(str, Enum):
    DESCRIPTION = "description"
    CATEGORY = "category"
    PRICE = "price"
    QUANTITY = "quantity"
    UNIT = "unit"
    EXCLUSION_FLAG = "exclusion_flag"


class ModerationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class PipelineStage(str, Enum):
    """Prompted stages that can carry an experimental variant."""
    EXTRACTION = "extraction"
    NORMALIZATION = "normalization"
    RECOMMENDATION = "recommendation"


class RefinementType(str, Enum):
    TERMINOLOGY = "terminology"
    CATEGORY_RULE = "category_rule"
    EXTRACTION_RULE = "extraction_rule"


class ErrorCategory(str, Enum):
    RATE_LIMIT = "RATE_LIMIT"
    TIMEOUT = "TIMEOUT"
    PARSE_ERROR = "PARSE_ERROR"
    AUTH_ERROR = "AUTH_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    QUOTA_ERROR = "QUOTA_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"
