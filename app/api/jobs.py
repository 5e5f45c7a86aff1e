"""
/api/v1/jobs endpoints.
Analysis queue statistics and job status.
"""

from fastapi import APIRouter, Depends, HTTPException
from redis import Redis
from rq import Queue, Worker
from rq.job import Job

from app.config import settings
from app.dependencies import verify_api_key
from app.schemas.api import JobStatus, QueueStats

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"], dependencies=[Depends(verify_api_key)])


def _get_redis() -> Redis:
    return Redis.from_url(settings.REDIS_URL)


@router.get("/queue/stats", response_model=QueueStats)
async def queue_stats():
    try:
        conn = _get_redis()
        q = Queue(settings.QUEUE_NAME, connection=conn)
        return QueueStats(
            queue_name=settings.QUEUE_NAME,
            queued=len(q),
            started=q.started_job_registry.count,
            finished=q.finished_job_registry.count,
            failed=q.failed_job_registry.count,
            deferred=q.deferred_job_registry.count,
            workers=len(Worker.all(connection=conn)),
        )
    except Exception as e:
        raise HTTPException(status_code=503, detail=f"Queue unavailable: {e}")


@router.get("/{job_id}", response_model=JobStatus)
async def get_job_status(job_id: str):
    try:
        job = Job.fetch(job_id, connection=_get_redis())
    except Exception as e:
        raise HTTPException(status_code=404, detail=f"Job not found: {e}")

    return JobStatus(
        job_id=job_id,
        project_id=job.args[0] if job.args else "",
        status=str(job.get_status()),
        enqueued_at=job.enqueued_at,
        started_at=job.started_at,
        ended_at=job.ended_at,
        error_message=str(job.exc_info) if job.exc_info else None,
        result=job.result if job.is_finished else None,
    )
