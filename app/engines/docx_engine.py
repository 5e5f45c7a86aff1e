"""
Word document text engine using python-docx.
Paragraphs first, then table rows joined with ' | '.
"""

import io

import docx
import structlog

from app.engines.base import EngineError, TextEngine

logger = structlog.get_logger(__name__)


class DocxEngine(TextEngine):

    engine_name = "docx"
    file_kinds = frozenset({"docx"})

    async def extract_text(self, data: bytes) -> str:
        try:
            document = docx.Document(io.BytesIO(data))
        except Exception as e:
            raise EngineError(self.engine_name, "ERR_DOCX_READ", str(e)) from e

        lines = [p.text for p in document.paragraphs if p.text.strip()]

        for table in document.tables:
            for row in table.rows:
                cells = [c.text.strip() for c in row.cells if c.text.strip()]
                if cells:
                    lines.append(" | ".join(cells))

        logger.debug("docx_extraction_complete", lines=len(lines), tables=len(document.tables))
        return "\n".join(lines)
