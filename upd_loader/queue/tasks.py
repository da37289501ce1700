"""Async task definitions for UPD processing.

Uses arq (async Redis queue) for background task processing.
The blocking processor runs in a worker thread, one job per upload.

Based on arq documentation:
https://arq-docs.helpmanual.io/
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from arq.connections import RedisSettings
from pydantic import BaseModel

from upd_loader.processing.service import ProcessingOutcome, UPDProcessor
from upd_loader.shared.config import Settings, get_settings
from upd_loader.shared.context import RequestContext

logger = logging.getLogger(__name__)

JOB_RESULT_TTL = 86400  # 24h


def job_key(job_id: str) -> str:
    """Redis key holding the JobResult of a job."""
    return f"job:{job_id}"


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class JobResult(BaseModel):
    """Result of a background job.

    Attributes:
        job_id: Unique job identifier
        status: Job status (pending, processing, completed, failed)
        filename: Uploaded archive name
        outcome: Processing outcome (once finished)
        error: Error message (if failed)
        created_at: Job creation timestamp
        completed_at: Job completion timestamp
    """

    job_id: str
    status: str
    filename: str
    outcome: ProcessingOutcome | None = None
    error: str | None = None
    created_at: str
    completed_at: str | None = None


async def process_upd(
    ctx: dict[str, Any],
    job_id: str,
    file_content: bytes,
    filename: str,
) -> dict[str, Any]:
    """Process one UPD archive in the background.

    Args:
        ctx: arq context (contains redis connection)
        job_id: Unique job identifier
        file_content: Raw archive bytes
        filename: Original filename

    Returns:
        JobResult as dict
    """
    logger.info(f"Processing UPD job {job_id} ({filename})")

    settings: Settings = ctx.get("settings") or get_settings()
    processor: UPDProcessor = ctx.get("processor") or UPDProcessor(settings)
    redis = ctx["redis"]

    stored = await redis.get(job_key(job_id))
    if stored:
        result = JobResult.model_validate_json(stored)
    else:
        result = JobResult(job_id=job_id, status="pending", filename=filename, created_at=utc_now())
    result.status = "processing"
    await redis.set(job_key(job_id), result.model_dump_json(), ex=JOB_RESULT_TTL)

    try:
        outcome = await asyncio.to_thread(
            processor.process_upd_file,
            file_content,
            filename,
            RequestContext(request_id=job_id[:12]),
        )
        result.outcome = outcome
        result.status = "completed" if outcome.success else "failed"
        if not outcome.success:
            result.error = outcome.message
    except Exception as e:
        logger.exception(f"Job {job_id} failed with error: {e}")
        result.status = "failed"
        result.error = str(e)

    result.completed_at = utc_now()
    await redis.set(job_key(job_id), result.model_dump_json(), ex=JOB_RESULT_TTL)
    logger.info(f"Job {job_id} completed with status: {result.status}")

    return result.model_dump(mode="json")


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook - initialize the shared processor.

    The processor holds no per-request state; each job still gets its own
    MoySklad client and request context.
    """
    logger.info("Initializing worker services...")
    settings = get_settings()
    ctx["settings"] = settings
    ctx["processor"] = UPDProcessor(settings)
    logger.info("Worker services initialized")


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook - cleanup resources."""
    logger.info("Worker shutting down...")


class WorkerSettings:
    """arq worker settings.

    Defines the worker configuration including:
    - Task functions to register
    - Redis connection settings
    - Job timeout settings
    """

    functions = [process_upd]
    on_startup = startup
    on_shutdown = shutdown

    # These will be set from environment
    redis_settings: RedisSettings | None = None
    max_jobs = 10
    job_timeout = 300

    @classmethod
    def get_redis_settings(cls) -> RedisSettings:
        """Get Redis settings from configuration."""
        return RedisSettings.from_dsn(get_settings().redis_url)

    @classmethod
    def configure(cls, settings: Settings) -> type["WorkerSettings"]:
        """Apply queue limits and the Redis DSN from configuration."""
        cls.redis_settings = RedisSettings.from_dsn(settings.redis_url)
        cls.max_jobs = settings.queue_max_jobs
        cls.job_timeout = settings.queue_job_timeout
        return cls
