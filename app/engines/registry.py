"""
Engine selection by file type.
"""

from app.engines.base import EngineError, TextEngine, normalize_file_kind
from app.engines.docx_engine import DocxEngine
from app.engines.pdfplumber_engine import PdfPlumberEngine
from app.engines.spreadsheet_engine import SpreadsheetEngine
from app.engines.stub_engine import StubEngine

ENGINES: list[TextEngine] = [
    PdfPlumberEngine(),
    SpreadsheetEngine(),
    DocxEngine(),
    StubEngine(),
]


def select_engine(file_type: str) -> TextEngine:
    for engine in ENGINES:
        if engine.supports(file_type):
            return engine
    raise EngineError(
        "registry", "ERR_UNSUPPORTED_TYPE",
        f"No text engine for file type '{normalize_file_kind(file_type) or file_type}'",
    )
