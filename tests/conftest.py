"""
Shared test fixtures.

In-memory stores stand in for the SQL repositories; the completion service
is an AsyncMock scripted with JSON responses.
"""

import json
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import random
from typing import Optional
from unittest.mock import AsyncMock

import pytest

from app.models.enums import DocumentStatus, ProjectStatus
from app.schemas.bids import BidDocument, ExtractedItem, Project
from app.schemas.comparison import ComparisonResult
from app.schemas.leveling import LevelingConfig
from app.schemas.training import ExportRecord, LearnedPattern, PromptVariant, TrainingContribution
from app.store.comparison_store import ComparisonStore
from app.store.training_store import TrainingStore


class InMemoryComparisonStore(ComparisonStore):

    def __init__(self, project: Optional[Project] = None):
        self.projects: dict[str, Project] = {}
        self.items: dict[str, list[ExtractedItem]] = {}
        self.comparisons: dict[str, ComparisonResult] = {}
        self.leveling: dict[str, LevelingConfig] = {}
        self.metrics_rows: list[dict] = []
        self.status_history: list[str] = []
        self._next_id = 0
        if project is not None:
            self.projects[project.id] = project

    def _document(self, doc_id: str) -> BidDocument:
        for project in self.projects.values():
            for doc in project.documents:
                if doc.id == doc_id:
                    return doc
        raise KeyError(doc_id)

    async def get_project(self, project_id):
        project = self.projects.get(project_id)
        return project.model_copy(deep=True) if project else None

    async def update_project_status(self, project_id, status, error_message=None):
        project = self.projects[project_id]
        project.status = ProjectStatus(status)
        project.error_message = error_message
        self.status_history.append(status)

    async def update_document(self, doc_id, upload_status=None, raw_text=None, error_message=None):
        doc = self._document(doc_id)
        if upload_status is not None:
            doc.upload_status = DocumentStatus(upload_status)
        if raw_text is not None:
            doc.raw_text = raw_text
        if error_message is not None:
            doc.error_message = error_message

    async def replace_items(self, doc_id, items):
        stored = []
        for item in items:
            self._next_id += 1
            stored.append(item.model_copy(update={"id": f"item-{self._next_id}"}))
        self.items[doc_id] = stored
        return [i.model_copy() for i in stored]

    async def list_items(self, project_id):
        project = self.projects[project_id]
        return {d.id: [i.model_copy() for i in self.items.get(d.id, [])] for d in project.documents}

    async def set_normalized_categories(self, mapping):
        for items in self.items.values():
            for item in items:
                if item.id in mapping:
                    item.normalized_category = mapping[item.id]

    async def upsert_comparison(self, result):
        self.comparisons[result.project_id] = result
        self.leveling.setdefault(result.project_id, LevelingConfig(enabled=False))

    async def get_leveling(self, project_id):
        config = self.leveling.get(project_id)
        return config.model_copy(deep=True) if config else None

    async def save_leveling(self, project_id, config, expected_version=None):
        current = self.leveling.get(project_id)
        if current is None:
            return None
        if expected_version is not None and expected_version != current.version:
            return None
        stored = config.model_copy(update={"version": current.version + 1})
        self.leveling[project_id] = stored
        return stored.model_copy(deep=True)

    async def apply_item_leveling(self, project_id, updates):
        for doc in self.projects[project_id].documents:
            for item in self.items.get(doc.id, []):
                is_baseline, leveled = updates.get(item.id, (False, None))
                item.is_baseline = is_baseline
                item.leveled_price = leveled

    async def save_pipeline_metrics(self, row):
        self.metrics_rows.append(row)


class InMemoryTrainingStore(TrainingStore):

    def __init__(self):
        self.contributions: list[TrainingContribution] = []
        self.variants: dict[str, PromptVariant] = {}
        self.patterns: list[LearnedPattern] = []
        self.exports: list[ExportRecord] = []
        self.fail_reads = False

    def _check(self):
        if self.fail_reads:
            raise RuntimeError("store unavailable")

    async def list_contributions(self, moderation_status="approved", trade_types=None,
                                 correction_types=None, limit=None):
        self._check()
        rows = [
            c for c in reversed(self.contributions)
            if c.moderation_status.value == moderation_status
            and (not trade_types or c.trade_type in trade_types)
            and (not correction_types or c.correction_type in correction_types)
        ]
        return rows[:limit] if limit else rows

    async def count_contributions(self, moderation_status="approved"):
        return len(await self.list_contributions(moderation_status))

    async def list_variants(self, trade_type, stage):
        self._check()
        rows = [v for v in self.variants.values() if v.trade_type == trade_type and v.pipeline_stage == stage]
        return sorted(rows, key=lambda v: v.total_runs, reverse=True)

    async def get_variant(self, variant_id):
        self._check()
        return self.variants.get(variant_id)

    async def save_variant(self, variant):
        self.variants[variant.id] = variant
        return variant

    async def activate_variant(self, variant_id, trade_type, stage):
        if variant_id not in self.variants:
            return False
        for v in self.variants.values():
            if v.trade_type == trade_type and v.pipeline_stage == stage:
                v.is_active = v.id == variant_id
        return True

    async def list_patterns(self, trade_type=None, active_only=False, limit=None):
        self._check()
        rows = [
            p for p in self.patterns
            if (not trade_type or p.trade_type == trade_type) and (not active_only or p.is_active)
        ]
        rows.sort(key=lambda p: p.occurrence_count, reverse=True)
        return rows[:limit] if limit else rows

    async def upsert_pattern(self, pattern, promote=False):
        for existing in self.patterns:
            if (existing.trade_type, existing.refinement_type, existing.pattern_key) == (
                pattern.trade_type, pattern.refinement_type, pattern.pattern_key,
            ):
                existing.pattern_value = pattern.pattern_value
                existing.occurrence_count = pattern.occurrence_count
                existing.is_active = existing.is_active or promote
                return
        self.patterns.append(pattern.model_copy(update={"is_active": promote}))

    async def record_export(self, record):
        self.exports.insert(0, record)
        return record

    async def list_exports(self):
        return list(self.exports)


class ScriptedGateway:
    """Completion gateway double: `complete` is an AsyncMock returning scripted responses in order."""

    def __init__(self, responses=(), configured=True):
        self.configured = configured
        self.complete = AsyncMock(side_effect=list(responses))

    def is_configured(self):
        return self.configured


def as_json(payload) -> str:
    return json.dumps(payload)


def make_project(contractors=("Acme Electric", "Bolt Power", "Circuit Co"), trade_type="electrical") -> Project:
    return Project(
        id="proj-1",
        name="Tower A",
        trade_type=trade_type,
        documents=[
            BidDocument(
                id=f"doc-{chr(ord('a') + n)}",
                project_id="proj-1",
                contractor_name=name,
                file_name=f"bid-{n}.txt",
                file_type="text/plain",
                file_uri=f"proj-1/bid-{n}.txt",
                file_size=100,
            )
            for n, name in enumerate(contractors)
        ],
    )


def make_item(doc_id, description, total_price, **kwargs) -> ExtractedItem:
    return ExtractedItem(bid_document_id=doc_id, description=description, total_price=total_price, **kwargs)


@pytest.fixture
def project():
    return make_project()


@pytest.fixture
def comparison_store(project):
    return InMemoryComparisonStore(project)


@pytest.fixture
def training_store():
    return InMemoryTrainingStore()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def artifact_root(tmp_path):
    for n in range(3):
        path = tmp_path / "proj-1" / f"bid-{n}.txt"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"Bid {n}\nService entrance 400A  $12,000\n", encoding="utf-8")
    return tmp_path
