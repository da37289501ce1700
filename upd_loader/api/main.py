"""FastAPI application for UPD ingestion.

Production-ready API with:
- Health and readiness checks for Kubernetes
- Synchronous UPD upload and reconciliation with MoySklad
- Background processing through the arq job queue
- MoySklad access diagnostics
- Prometheus metrics for monitoring

Based on FastAPI best practices:
https://fastapi.tiangolo.com/
"""

import time
import uuid

from arq import create_pool
from arq.connections import ArqRedis
from fastapi import FastAPI, File, HTTPException, Request, Response, UploadFile, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from upd_loader.api import metrics
from upd_loader.moysklad.schema import ApiStatus
from upd_loader.processing.service import ProcessingOutcome, UPDProcessor
from upd_loader.queue.tasks import JOB_RESULT_TTL, JobResult, WorkerSettings, job_key, utc_now
from upd_loader.shared.config import get_settings
from upd_loader.shared.context import RequestContext
from upd_loader.shared.errors import ErrorKind
from upd_loader.shared.logging_setup import setup_logging

settings = get_settings()
setup_logging(settings)

app = FastAPI(
    title="UPD Loader",
    description="Loads UPD e-invoice archives into MoySklad as shipments and invoices",
    version=settings.service_version,
)

processor = UPDProcessor(settings)

REJECTION_KINDS = {ErrorKind.FILE_TOO_LARGE, ErrorKind.INVALID_FILE_TYPE, ErrorKind.EMPTY_FILE}

_arq_pool: ArqRedis | None = None


async def get_arq_pool() -> ArqRedis:
    """Get (lazily create) the shared arq Redis pool."""
    global _arq_pool
    if _arq_pool is None:
        _arq_pool = await create_pool(WorkerSettings.get_redis_settings())
    return _arq_pool


@app.middleware("http")
async def metrics_middleware(request: Request, call_next):  # type: ignore[no-untyped-def]
    """Middleware to collect request metrics.

    Tracks:
    - Request count by method, endpoint, and status
    - Request duration by method and endpoint
    """
    # Skip metrics for /metrics endpoint itself
    if request.url.path == "/metrics":
        return await call_next(request)

    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    metrics.http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code,
    ).inc()

    metrics.http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path,
    ).observe(duration)

    return response


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    service: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool


class JobSubmitResponse(BaseModel):
    """Queued UPD job."""

    job_id: str
    status: str
    filename: str


@app.get("/health", response_model=HealthResponse, tags=["Health"])
def health_check() -> HealthResponse:
    """Health check endpoint for liveness probe.

    Returns:
        Health status information
    """
    return HealthResponse(
        status="healthy", version=settings.service_version, service=settings.service_name
    )


@app.get("/ready", response_model=ReadinessResponse, tags=["Health"])
def readiness_check() -> ReadinessResponse:
    """Readiness check endpoint for Kubernetes readiness probe.

    Returns:
        Readiness status
    """
    return ReadinessResponse(ready=True)


@app.get("/metrics", tags=["Monitoring"])
def get_metrics() -> Response:
    """Prometheus metrics endpoint.

    Returns:
        Prometheus metrics in text format
    """
    metrics_data, content_type = metrics.get_metrics()
    return Response(content=metrics_data, media_type=content_type)


def _read_upload(file: UploadFile) -> tuple[bytes, str]:
    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")
    return file.file.read(), file.filename


@app.post("/api/v1/upd/upload", response_model=ProcessingOutcome, tags=["UPD"])
def upload_upd(
    file: UploadFile = File(..., description="UPD ZIP archive"),  # noqa: B008
) -> ProcessingOutcome | JSONResponse:
    """Upload a UPD archive and create the shipment and invoice in MoySklad.

    Runs synchronously in the server threadpool; each request gets its own
    scratch directory, MoySklad client and request id.

    ## Usage

    ```bash
    curl -X POST "http://localhost:8000/api/v1/upd/upload" \\
      -F "file=@upd.zip"
    ```

    ## Responses

    - 200 with `success: true` when both documents were created
    - 200 with `success: false` and an `error_kind` when parsing or
      reconciliation failed
    - 400 when the upload is rejected (too large, not a ZIP, empty)

    Args:
        file: UPD ZIP archive

    Returns:
        Processing outcome
    """
    content, filename = _read_upload(file)
    ctx = RequestContext()

    outcome = processor.process_upd_file(content, filename, ctx)
    if outcome.error_kind in REJECTION_KINDS:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST, content=outcome.model_dump(mode="json")
        )
    return outcome


@app.get("/api/v1/moysklad/status", response_model=ApiStatus, tags=["MoySklad"])
def moysklad_status() -> ApiStatus:
    """Check MoySklad API access: employee, organization and permissions.

    Returns:
        MoySklad access diagnostics
    """
    return processor.get_moysklad_status(RequestContext())


@app.post("/api/v1/upd/jobs", response_model=JobSubmitResponse, tags=["Jobs"])
async def submit_upd_job(
    file: UploadFile = File(..., description="UPD ZIP archive"),  # noqa: B008
) -> JobSubmitResponse:
    """Queue a UPD archive for background processing.

    Args:
        file: UPD ZIP archive

    Returns:
        Job identifier to poll

    Raises:
        HTTPException: 503 if the queue is disabled, 400 if the upload is rejected
    """
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is not enabled",
        )

    if not file.filename:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No filename provided")
    content = await file.read()

    rejection = processor.validate_upload(content, file.filename)
    if rejection is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=rejection.message)

    job_id = str(uuid.uuid4())
    pool = await get_arq_pool()

    pending = JobResult(
        job_id=job_id, status="pending", filename=file.filename, created_at=utc_now()
    )
    await pool.set(job_key(job_id), pending.model_dump_json(), ex=JOB_RESULT_TTL)
    await pool.enqueue_job(
        "process_upd",
        job_id=job_id,
        file_content=content,
        filename=file.filename,
        _job_id=job_id,
    )

    return JobSubmitResponse(job_id=job_id, status="pending", filename=file.filename)


@app.get("/api/v1/upd/jobs/{job_id}", response_model=JobResult, tags=["Jobs"])
async def get_upd_job(job_id: str) -> JobResult:
    """Get the status and outcome of a queued UPD job.

    Args:
        job_id: Job identifier

    Returns:
        Stored job result

    Raises:
        HTTPException: 503 if the queue is disabled, 404 if the job is unknown
    """
    if not settings.queue_enabled:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue is not enabled",
        )

    pool = await get_arq_pool()
    data = await pool.get(job_key(job_id))
    if data is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Job not found: {job_id}")

    return JobResult.model_validate_json(data)
