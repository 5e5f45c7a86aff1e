"""
RQ job functions for the comparison pipeline.
These are the entry points that the worker calls.
"""

import asyncio
from typing import Optional

import structlog
from redis import Redis
from rq import Queue
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.engines.base import normalize_file_kind
from app.llm.gateway import CompletionGateway
from app.learning.variants import VariantManager
from app.models.database import async_session_factory
from app.observability import metrics
from app.observability.collector import PipelineMetricsCollector
from app.pipeline.orchestrator import ComparisonPipeline
from app.schemas.bids import Project
from app.storage.artifact_store import ArtifactStore
from app.store.comparison_store import SqlComparisonStore
from app.store.training_store import SqlTrainingStore

logger = structlog.get_logger(__name__)


def get_queue() -> Queue:
    """Get the analysis job queue."""
    conn = Redis.from_url(settings.REDIS_URL)
    return Queue(settings.QUEUE_NAME, connection=conn)


def enqueue_analysis(project_id: str) -> str:
    """
    Enqueue a project for comparison analysis.
    Returns the job ID.
    """
    q = get_queue()
    job = q.enqueue(
        run_analysis_job,
        project_id,
        job_timeout=settings.JOB_TIMEOUT_SECONDS,
        result_ttl=86400,  # 24 hours
        failure_ttl=604800,  # 7 days
    )
    logger.info("job_enqueued", project_id=project_id, job_id=job.id)
    return job.id


def build_pipeline(
    session: AsyncSession,
    gateway: Optional[CompletionGateway] = None,
    artifacts: Optional[ArtifactStore] = None,
) -> ComparisonPipeline:
    """Wire a pipeline over one session, persisting run metrics through the same store."""
    store = SqlComparisonStore(session)
    training_store = SqlTrainingStore(session)

    def sink_factory(project: Project) -> PipelineMetricsCollector:
        kinds = {normalize_file_kind(d.file_type) for d in project.documents}
        return PipelineMetricsCollector(
            trade_type=project.trade_type,
            document_type=kinds.pop() if len(kinds) == 1 else "mixed",
            document_size_bytes=sum(d.file_size for d in project.documents) or None,
            writer=store.save_pipeline_metrics,
        )

    return ComparisonPipeline(
        store=store,
        training_store=training_store,
        gateway=gateway or CompletionGateway(),
        artifacts=artifacts or ArtifactStore(),
        variants=VariantManager(training_store),
        sink_factory=sink_factory,
    )


def run_analysis_job(project_id: str) -> dict:
    """
    Main job function: run one comparison.
    This runs inside the RQ worker process.
    """
    logger.info("job_started", project_id=project_id)
    metrics.worker_jobs_active.inc()

    try:
        result = asyncio.run(_run_analysis_async(project_id))
        logger.info("job_completed", project_id=project_id)
        return result
    except Exception as e:
        logger.error("job_failed", project_id=project_id, error=str(e))
        raise
    finally:
        metrics.worker_jobs_active.dec()


async def _run_analysis_async(project_id: str) -> dict:
    async with async_session_factory() as session:
        result = await build_pipeline(session).run(project_id)
    recommendation = result.recommendation
    return {
        "project_id": project_id,
        "status": "complete",
        "total_items": result.total_items,
        "recommended_contractor_id": recommendation.recommended_contractor_id if recommendation else None,
    }
