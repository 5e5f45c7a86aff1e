"""
Abstract base class for document text engines.
Every engine turns the raw bytes of one bid document into plain text.
"""

from abc import ABC, abstractmethod


class TextEngine(ABC):
    """
    Abstract base class for all text engines.

    Every engine must:
    1. Report its name
    2. Say which file kinds it handles
    3. Return the document text, never partial/corrupt data
    4. Raise EngineError on failure
    """

    @property
    @abstractmethod
    def engine_name(self) -> str:
        """Unique identifier: 'pdfplumber', 'spreadsheet', 'docx'"""
        ...

    @property
    @abstractmethod
    def file_kinds(self) -> frozenset[str]:
        """Normalised file kinds this engine accepts ('pdf', 'xlsx', ...)."""
        ...

    def supports(self, file_type: str) -> bool:
        return normalize_file_kind(file_type) in self.file_kinds

    @abstractmethod
    async def extract_text(self, data: bytes) -> str:
        ...


class EngineError(Exception):
    """Raised when a text engine fails."""

    def __init__(self, engine_name: str, error_code: str, message: str):
        self.engine_name = engine_name
        self.error_code = error_code
        self.message = message
        super().__init__(f"[{engine_name}] {error_code}: {message}")


_MIME_KINDS = {
    "application/pdf": "pdf",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-excel": "xls",
    "text/csv": "csv",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": "docx",
    "application/msword": "doc",
    "text/plain": "txt",
}


def normalize_file_kind(file_type: str) -> str:
    """Accept a MIME type, an extension or a file name and return a short kind."""
    value = (file_type or "").strip().lower()
    if value in _MIME_KINDS:
        return _MIME_KINDS[value]
    if "." in value:
        value = value.rsplit(".", 1)[-1]
    return value
