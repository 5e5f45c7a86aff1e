"""
Extraction stage: one bid document in, structured line items out.

Each document is isolated. A failure to load, read, complete or decode
marks only that document as error; the stage carries on with the rest.
Documents run one at a time unless EXTRACTION_CONCURRENCY > 1, in which
case a bounded pool overlaps the slow parts (text engines and completions)
while store writes stay serialized.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import structlog

from app.config import settings
from app.engines.base import TextEngine, normalize_file_kind
from app.engines.registry import select_engine
from app.errors import StageDecodeError
from app.llm.gateway import CompletionGateway
from app.llm.prompts import extraction_messages
from app.models.enums import DocumentStatus, PipelineStage
from app.observability import metrics
from app.observability.collector import categorize_error
from app.pipeline.decoding import decode
from app.schemas.bids import BidDocument, ExtractedItem
from app.schemas.stages import ExtractionOutput
from app.storage.artifact_store import ArtifactStore
from app.store.comparison_store import ComparisonStore

logger = structlog.get_logger(__name__)


@dataclass
class DocumentExtraction:
    document: BidDocument
    items: list[ExtractedItem] = field(default_factory=list)
    output: Optional[ExtractionOutput] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class ExtractionSummary:
    """Aggregate over all documents, whatever their outcome."""
    results: list[DocumentExtraction]
    duration_ms: int

    @property
    def items_by_document(self) -> dict[str, list[ExtractedItem]]:
        return {r.document.id: r.items for r in self.results}

    @property
    def total_items(self) -> int:
        return sum(len(r.items) for r in self.results)

    @property
    def confidence_scores(self) -> list[float]:
        return [i.confidence_score for r in self.results for i in r.items]

    @property
    def items_needing_review(self) -> int:
        return sum(1 for r in self.results for i in r.items if i.needs_review)

    @property
    def failures(self) -> list[DocumentExtraction]:
        return [r for r in self.results if not r.ok]

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)


def to_extracted_items(doc_id: str, output: ExtractionOutput) -> list[ExtractedItem]:
    return [
        ExtractedItem(
            bid_document_id=doc_id,
            description=item.description,
            quantity=item.quantity,
            unit=item.unit,
            unit_price=item.unit_price,
            total_price=item.total_price,
            category=item.category,
            is_exclusion=item.is_exclusion,
            is_inclusion=item.is_inclusion,
            confidence_score=item.confidence_score,
            needs_review=item.needs_review,
            raw_text=item.raw_text,
            ai_notes=item.notes,
        )
        for item in output.items
    ]


class ExtractionStage:

    def __init__(
        self,
        gateway: CompletionGateway,
        store: ComparisonStore,
        artifacts: ArtifactStore,
        engine_for: Callable[[str], TextEngine] = select_engine,
    ):
        self.gateway = gateway
        self.store = store
        self.artifacts = artifacts
        self.engine_for = engine_for
        self._store_lock = asyncio.Lock()

    async def run(
        self,
        documents: list[BidDocument],
        trade_type: str,
        examples: str = "",
        patterns: str = "",
        variant: str = "",
        concurrency: int = settings.EXTRACTION_CONCURRENCY,
    ) -> ExtractionSummary:
        start = time.monotonic()

        if concurrency <= 1:
            results = []
            for doc in documents:
                results.append(await self.extract_document(doc, trade_type, examples, patterns, variant))
        else:
            pool = asyncio.Semaphore(concurrency)

            async def worker(doc: BidDocument) -> DocumentExtraction:
                async with pool:
                    return await self.extract_document(doc, trade_type, examples, patterns, variant)

            results = list(await asyncio.gather(*(worker(d) for d in documents)))

        duration = time.monotonic() - start
        metrics.pipeline_stage_duration_seconds.labels(stage=PipelineStage.EXTRACTION.value).observe(duration)
        return ExtractionSummary(results=results, duration_ms=int(duration * 1000))

    async def extract_document(
        self,
        doc: BidDocument,
        trade_type: str,
        examples: str = "",
        patterns: str = "",
        variant: str = "",
    ) -> DocumentExtraction:
        log = logger.bind(doc_id=doc.id, contractor=doc.contractor_name)
        await self._write(self.store.update_document(doc.id, upload_status=DocumentStatus.PROCESSING.value))

        try:
            text = await self.read_text(doc)
            await self._write(self.store.update_document(doc.id, raw_text=text))

            response = await self.gateway.complete(
                extraction_messages(trade_type, text, examples, patterns, variant),
                response_format={"type": "json_object"},
            )
            decoded = decode(response, ExtractionOutput)
            if not decoded.ok:
                metrics.pipeline_stage_decode_failures_total.labels(stage=PipelineStage.EXTRACTION.value).inc()
                raise StageDecodeError(PipelineStage.EXTRACTION.value, decoded.error)

            items = await self._write(
                self.store.replace_items(doc.id, to_extracted_items(doc.id, decoded.value))
            )
            await self._write(self.store.update_document(doc.id, upload_status=DocumentStatus.PROCESSED.value))

        except Exception as e:
            error_code = getattr(e, "error_code", None) or categorize_error(e)
            message = getattr(e, "message", None) or str(e) or type(e).__name__
            log.warning("document_extraction_failed", error_code=error_code, error=message)
            metrics.documents_failed_total.labels(error_code=error_code).inc()
            try:
                await self._write(self.store.update_document(
                    doc.id, upload_status=DocumentStatus.ERROR.value, error_message=message,
                ))
            except Exception as write_error:
                log.error("document_status_write_failed", error=str(write_error))
            return DocumentExtraction(document=doc, error=message, error_code=error_code)

        review = sum(1 for i in items if i.needs_review)
        metrics.documents_extracted_total.labels(file_kind=normalize_file_kind(doc.file_type)).inc()
        metrics.extracted_items_total.labels(needs_review="true").inc(review)
        metrics.extracted_items_total.labels(needs_review="false").inc(len(items) - review)
        log.info(
            "document_extracted",
            items=len(items),
            needs_review=review,
            base_bid_total=decoded.value.base_bid_total,
        )
        return DocumentExtraction(document=doc, items=items, output=decoded.value)

    async def read_text(self, doc: BidDocument) -> str:
        engine = self.engine_for(doc.file_type)
        data = await self.artifacts.load_document(doc.id, doc.file_uri)
        return await engine.extract_text(data)

    async def _write(self, op):
        async with self._store_lock:
            return await op
