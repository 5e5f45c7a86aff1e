"""
Persistence boundary for comparisons.

The pipeline and the leveling service talk to ComparisonStore only;
SqlComparisonStore is the SQLAlchemy implementation used by the API and worker.
"""

from abc import ABC, abstractmethod
from typing import Optional

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.tables import (
    BidDocumentRow,
    ComparisonResultRow,
    ExtractedItemRow,
    PipelineMetricsRow,
    ProjectRow,
)
from app.schemas.bids import BidDocument, ExtractedItem, Project
from app.schemas.comparison import ComparisonResult
from app.schemas.leveling import LevelingConfig

logger = structlog.get_logger(__name__)


class ComparisonStore(ABC):
    """Read/write/upsert operations the comparison core depends on."""

    @abstractmethod
    async def get_project(self, project_id: str) -> Optional[Project]:
        ...

    @abstractmethod
    async def update_project_status(
        self, project_id: str, status: str, error_message: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def update_document(
        self,
        doc_id: str,
        upload_status: Optional[str] = None,
        raw_text: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        ...

    @abstractmethod
    async def replace_items(self, doc_id: str, items: list[ExtractedItem]) -> list[ExtractedItem]:
        """Drop any previous items for the document and store these. Returns them with ids."""
        ...

    @abstractmethod
    async def list_items(self, project_id: str) -> dict[str, list[ExtractedItem]]:
        """Items keyed by bid document id."""
        ...

    @abstractmethod
    async def set_normalized_categories(self, mapping: dict[str, str]) -> None:
        """item id -> normalized description."""
        ...

    @abstractmethod
    async def upsert_comparison(self, result: ComparisonResult) -> None:
        ...

    @abstractmethod
    async def get_leveling(self, project_id: str) -> Optional[LevelingConfig]:
        """None when the project has no comparison result yet."""
        ...

    @abstractmethod
    async def save_leveling(
        self,
        project_id: str,
        config: LevelingConfig,
        expected_version: Optional[int] = None,
    ) -> Optional[LevelingConfig]:
        """
        Store the config with version bumped by one.
        Returns None if expected_version is given and no longer current.
        """
        ...

    @abstractmethod
    async def apply_item_leveling(
        self, project_id: str, updates: dict[str, tuple[bool, Optional[float]]],
    ) -> None:
        """Reset is_baseline/leveled_price for the project, then apply item id -> (is_baseline, leveled_price)."""
        ...

    @abstractmethod
    async def save_pipeline_metrics(self, row: dict) -> None:
        ...


class SqlComparisonStore(ComparisonStore):
    """ComparisonStore over an AsyncSession. Writes commit immediately so status is visible mid-run."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_project(self, project_id: str) -> Optional[Project]:
        result = await self.session.execute(
            select(ProjectRow)
            .where(ProjectRow.id == project_id)
            .options(selectinload(ProjectRow.documents))
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return Project(
            id=row.id,
            name=row.name,
            trade_type=row.trade_type,
            status=row.status,
            error_message=row.error_message,
            documents=[BidDocument.model_validate(d) for d in row.documents],
        )

    async def update_project_status(
        self, project_id: str, status: str, error_message: Optional[str] = None,
    ) -> None:
        await self.session.execute(
            update(ProjectRow)
            .where(ProjectRow.id == project_id)
            .values(status=status, error_message=error_message[:500] if error_message else None)
        )
        await self.session.commit()

    async def update_document(
        self,
        doc_id: str,
        upload_status: Optional[str] = None,
        raw_text: Optional[str] = None,
        error_message: Optional[str] = None,
    ) -> None:
        values = {}
        if upload_status is not None:
            values["upload_status"] = upload_status
        if raw_text is not None:
            values["raw_text"] = raw_text
        if error_message is not None:
            values["error_message"] = error_message[:500]
        if not values:
            return
        await self.session.execute(
            update(BidDocumentRow).where(BidDocumentRow.id == doc_id).values(**values)
        )
        await self.session.commit()

    async def replace_items(self, doc_id: str, items: list[ExtractedItem]) -> list[ExtractedItem]:
        await self.session.execute(
            delete(ExtractedItemRow).where(ExtractedItemRow.bid_document_id == doc_id)
        )
        rows = []
        for line_number, item in enumerate(items):
            data = item.model_dump(exclude={"id"})
            data["bid_document_id"] = doc_id
            data["line_number"] = line_number
            row = ExtractedItemRow(**data)
            self.session.add(row)
            rows.append(row)
        await self.session.flush()
        await self.session.commit()
        return [ExtractedItem.model_validate(r) for r in rows]

    async def list_items(self, project_id: str) -> dict[str, list[ExtractedItem]]:
        result = await self.session.execute(
            select(ExtractedItemRow)
            .join(BidDocumentRow, BidDocumentRow.id == ExtractedItemRow.bid_document_id)
            .where(BidDocumentRow.project_id == project_id)
            .order_by(ExtractedItemRow.bid_document_id, ExtractedItemRow.line_number)
            .execution_options(populate_existing=True)
        )
        grouped: dict[str, list[ExtractedItem]] = {}
        for row in result.scalars().all():
            grouped.setdefault(row.bid_document_id, []).append(ExtractedItem.model_validate(row))
        return grouped

    async def set_normalized_categories(self, mapping: dict[str, str]) -> None:
        for item_id, normalized in mapping.items():
            await self.session.execute(
                update(ExtractedItemRow)
                .where(ExtractedItemRow.id == item_id)
                .values(normalized_category=normalized)
            )
        await self.session.commit()

    async def upsert_comparison(self, result: ComparisonResult) -> None:
        row = await self.session.get(ComparisonResultRow, result.project_id)
        if row is None:
            row = ComparisonResultRow(project_id=result.project_id)
            self.session.add(row)

        row.total_bids = result.total_bids
        row.price_low = result.price_low
        row.price_high = result.price_high
        row.price_average = result.price_average
        row.total_scope_items = result.total_scope_items
        row.common_items = result.common_items
        row.gap_items = result.gap_items
        row.summary_json = result.model_dump(
            mode="json", include={"contractors", "scope_gaps", "match_rate", "total_items", "notes"},
        )
        row.recommendation_json = (
            result.recommendation.model_dump(mode="json") if result.recommendation else None
        )
        await self.session.commit()

    async def get_leveling(self, project_id: str) -> Optional[LevelingConfig]:
        row = await self.session.get(ComparisonResultRow, project_id, populate_existing=True)
        if row is None:
            return None
        if not row.leveling_json:
            return LevelingConfig(enabled=False, version=row.leveling_version)
        config = LevelingConfig.model_validate(row.leveling_json)
        config.version = row.leveling_version
        return config

    async def save_leveling(
        self,
        project_id: str,
        config: LevelingConfig,
        expected_version: Optional[int] = None,
    ) -> Optional[LevelingConfig]:
        row = await self.session.get(ComparisonResultRow, project_id, populate_existing=True)
        if row is None:
            return None

        current = row.leveling_version
        if expected_version is not None and expected_version != current:
            logger.info("leveling_version_conflict", project_id=project_id,
                        expected=expected_version, current=current)
            return None

        stored = config.model_copy(update={"version": current + 1})
        result = await self.session.execute(
            update(ComparisonResultRow)
            .where(ComparisonResultRow.project_id == project_id)
            .where(ComparisonResultRow.leveling_version == current)
            .values(
                leveling_json=stored.model_dump(mode="json") if stored.baselines or stored.enabled else None,
                leveling_version=current + 1,
            )
        )
        if result.rowcount != 1:
            await self.session.rollback()
            return None
        await self.session.commit()
        return stored

    async def apply_item_leveling(
        self, project_id: str, updates: dict[str, tuple[bool, Optional[float]]],
    ) -> None:
        doc_ids = select(BidDocumentRow.id).where(BidDocumentRow.project_id == project_id)
        await self.session.execute(
            update(ExtractedItemRow)
            .where(ExtractedItemRow.bid_document_id.in_(doc_ids))
            .values(is_baseline=False, leveled_price=None)
        )
        for item_id, (is_baseline, leveled_price) in updates.items():
            await self.session.execute(
                update(ExtractedItemRow)
                .where(ExtractedItemRow.id == item_id)
                .values(is_baseline=is_baseline, leveled_price=leveled_price)
            )
        await self.session.commit()

    async def save_pipeline_metrics(self, row: dict) -> None:
        self.session.add(PipelineMetricsRow(pipeline_run_id=row["pipeline_run_id"], payload=row))
        await self.session.commit()
