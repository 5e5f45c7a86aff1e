"""
pdfplumber text engine.
Primary path for bid PDFs with embedded text layers.
"""

import io

import pdfplumber
import structlog

from app.engines.base import EngineError, TextEngine

logger = structlog.get_logger(__name__)


class PdfPlumberEngine(TextEngine):
    """
    Reads every page's text layer and joins pages with a blank line.
    Scanned PDFs without a text layer come back empty; the extraction
    stage then reports no items rather than guessing.
    """

    engine_name = "pdfplumber"
    file_kinds = frozenset({"pdf"})

    async def extract_text(self, data: bytes) -> str:
        try:
            with pdfplumber.open(io.BytesIO(data)) as pdf:
                pages = []
                for page in pdf.pages:
                    text = page.extract_text(x_tolerance=3, y_tolerance=3) or ""
                    if text.strip():
                        pages.append(text)
                page_count = len(pdf.pages)
        except Exception as e:
            raise EngineError(self.engine_name, "ERR_PDF_READ", str(e)) from e

        logger.debug(
            "pdfplumber_extraction_complete",
            page_count=page_count,
            text_pages=len(pages),
        )
        return "\n\n".join(pages)
