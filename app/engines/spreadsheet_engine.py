"""
Spreadsheet text engine (xlsx via openpyxl, csv via the csv module).
Each sheet renders as tab-separated rows under a sheet header so the
extraction stage sees columns the way a reviewer would.
"""

import csv
import io

import structlog
from openpyxl import load_workbook

from app.engines.base import EngineError, TextEngine

logger = structlog.get_logger(__name__)

MAX_ROWS_PER_SHEET = 2000
MAX_SHEETS = 30


def _render_row(values) -> str:
    cells = ["" if v is None else str(v).strip() for v in values]
    while cells and not cells[-1]:
        cells.pop()
    return "\t".join(cells)


class SpreadsheetEngine(TextEngine):

    engine_name = "spreadsheet"
    file_kinds = frozenset({"xlsx", "xlsm", "csv"})

    async def extract_text(self, data: bytes) -> str:
        if data[:2] == b"PK":
            return self._from_workbook(data)
        return self._from_csv(data)

    def _from_workbook(self, data: bytes) -> str:
        try:
            wb = load_workbook(io.BytesIO(data), data_only=True, read_only=True)
        except Exception as e:
            raise EngineError(self.engine_name, "ERR_WORKBOOK_READ", str(e)) from e

        chunks = []
        try:
            for ws in wb.worksheets[:MAX_SHEETS]:
                rows = []
                for values in ws.iter_rows(values_only=True):
                    line = _render_row(values)
                    if line.strip():
                        rows.append(line)
                    if len(rows) >= MAX_ROWS_PER_SHEET:
                        break
                if rows:
                    chunks.append(f"=== Sheet: {ws.title} ===\n" + "\n".join(rows))
        finally:
            wb.close()

        logger.debug("spreadsheet_extraction_complete", sheets=len(chunks))
        return "\n\n".join(chunks)

    def _from_csv(self, data: bytes) -> str:
        text = data.decode("utf-8-sig", errors="replace")
        try:
            rows = [_render_row(r) for r in csv.reader(io.StringIO(text))]
        except csv.Error as e:
            raise EngineError(self.engine_name, "ERR_CSV_READ", str(e)) from e
        return "\n".join(r for r in rows if r.strip())
