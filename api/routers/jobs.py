"""
Job endpoints.

POST /jobs/                    → Validate the input image and dispatch a job
GET  /jobs/                    → List this shop's jobs with filtering + pagination
GET  /jobs/stats               → Aggregate statistics (per status, delivered, credits, timing)
GET  /jobs/deliveries/failed   → Failed catalog deliveries recorded by the guard
POST /jobs/sync                → Refresh many jobs from the job API at once
GET  /jobs/{job_id}            → Get a single job
POST /jobs/{job_id}/sync       → Refresh one job from the job API
POST /jobs/{job_id}/retry      → Re-dispatch a failed job
POST /jobs/{job_id}/cancel     → Cancel a pending/processing job (local only)
POST /jobs/{job_id}/deliver    → Push a completed job's output into the catalog

The API layer is intentionally thin:
- Validate input (Pydantic does this automatically)
- Call the orchestrator
- Return the response

Domain errors (not found, wrong state, ...) are raised as JobError and turned
into responses by the handler in api/main.py, so there is no try/except here.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from fastapi import status as http_status

from api.dependencies import get_guard, get_orchestrator, get_shop
from api.schemas.delivery import UploadResultResponse
from api.schemas.job import (
    BulkSyncRequest,
    BulkSyncResponse,
    DeliveryRequest,
    FailedDelivery,
    JobDispatch,
    JobListResponse,
    JobResponse,
    JobStats,
    SyncOutcomeResponse,
)
from delivery.guard import DeliveryGuard
from jobs.orchestrator import JobOrchestrator
from jobs.types import DeliveryParams, DispatchParams, JobFilters
from models.enums import JobStatus

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/", response_model=JobResponse, status_code=201)
async def dispatch_job(
    job_in: JobDispatch,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    """
    Dispatch a new job.

    The input image is validated first (reachable, JPG/PNG/WebP, ≤ 20 MB);
    a rejected image answers 422 and nothing is sent to the job API.
    The job is stored in pending; progress arrives through sync.
    """
    job = await orchestrator.dispatch_job(DispatchParams(
        shop=shop,
        tool_id=job_in.tool_id,
        tool_name=job_in.tool_name,
        input_url=str(job_in.input_url),
        parameters=job_in.parameters,
        metadata=job_in.metadata,
        priority=job_in.priority,
        destination_id=job_in.destination_id,
        destination_title=job_in.destination_title,
        variant_id=job_in.variant_id,
        source_media_id=job_in.source_media_id,
        batch_id=job_in.batch_id,
    ))
    return JobResponse.model_validate(job)


@router.get("/", response_model=JobListResponse)
async def list_jobs(
    status: Optional[JobStatus] = Query(None, description="Filter by job status"),
    tool_id: Optional[str] = Query(None, description="Filter by tool"),
    destination_id: Optional[str] = Query(None, description="Filter by destination product"),
    batch_id: Optional[UUID] = Query(None, description="Filter by batch"),
    from_date: Optional[datetime] = Query(None, description="Created at or after"),
    to_date: Optional[datetime] = Query(None, description="Created at or before"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Jobs per page"),
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobListResponse:
    """
    List jobs, most recent first.

    Pagination works with OFFSET/LIMIT:
    - page=1, page_size=20 → rows 0-19
    - page=2, page_size=20 → rows 20-39
    """
    filters = JobFilters(
        shop=shop,
        status=status,
        tool_id=tool_id,
        destination_id=destination_id,
        batch_id=batch_id,
        from_date=from_date,
        to_date=to_date,
    )
    jobs, total = await orchestrator.list_jobs(
        filters, limit=page_size, offset=(page - 1) * page_size
    )
    return JobListResponse(
        jobs=[JobResponse.model_validate(j) for j in jobs],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/stats", response_model=JobStats)
async def get_job_stats(
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobStats:
    """Counts per status in a single conditional-aggregation query, computed on every call."""
    stats = await orchestrator.get_stats(shop)
    return JobStats.model_validate(stats)


@router.get("/deliveries/failed", response_model=list[FailedDelivery])
async def list_failed_deliveries(
    shop: str = Depends(get_shop),
    guard: DeliveryGuard = Depends(get_guard),
) -> list[FailedDelivery]:
    entries = await guard.failures(shop)
    return [FailedDelivery(**entry) for entry in entries]


@router.post("/sync", response_model=BulkSyncResponse)
async def bulk_sync_jobs(
    body: BulkSyncRequest,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> BulkSyncResponse:
    """
    Refresh many jobs. Each id gets its own outcome: an unknown id or an
    unreachable job API fails that entry only.
    """
    outcomes = await orchestrator.bulk_sync_jobs(body.job_ids, shop)
    results = [
        SyncOutcomeResponse(
            job_id=o.job_id,
            ok=o.ok,
            job=JobResponse.model_validate(o.job) if o.job is not None else None,
            error=o.error,
        )
        for o in outcomes
    ]
    synced = sum(1 for r in results if r.ok)
    return BulkSyncResponse(results=results, synced=synced, failed=len(results) - synced)


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(
    job_id: UUID,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    """Get a single job by its UUID (local read, no job API call)."""
    job = await orchestrator.get_job(job_id, shop)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/sync", response_model=JobResponse)
async def sync_job(
    job_id: UUID,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    job = await orchestrator.sync_job(job_id, shop)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/retry", response_model=JobResponse)
async def retry_job(
    job_id: UUID,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    """
    Re-dispatch a failed job with its original tool, input and parameters.

    Only FAILED jobs can be retried (409 otherwise). The job keeps its local
    id and gets a new external job id.
    """
    job = await orchestrator.retry_job(job_id, shop)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/cancel", response_model=JobResponse)
async def cancel_job(
    job_id: UUID,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> JobResponse:
    """
    Cancel a job.

    Only PENDING and PROCESSING jobs can be cancelled. The row is kept with
    status=CANCELLED so it still shows up in stats and history. The job API
    is not told: whatever it produces afterwards is ignored.
    """
    job = await orchestrator.cancel_job(job_id, shop)
    return JobResponse.model_validate(job)


@router.post("/{job_id}/deliver", response_model=UploadResultResponse)
async def deliver_job(
    job_id: UUID,
    response: Response,
    body: Optional[DeliveryRequest] = None,
    shop: str = Depends(get_shop),
    orchestrator: JobOrchestrator = Depends(get_orchestrator),
) -> UploadResultResponse:
    """
    Upload a completed job's output into its destination product.

    Refused with 409 before any network call unless the job is completed
    and not yet delivered. A failed upload answers 400 with the failing step.
    """
    body = body or DeliveryRequest()
    result = await orchestrator.deliver_job(job_id, shop, DeliveryParams(
        destination_id=body.destination_id,
        alt_text=body.alt_text,
        replace_media_id=body.replace_media_id,
        replace_source=body.replace_source,
        set_primary=body.set_primary,
        position=body.position,
    ))
    if not result.success:
        response.status_code = http_status.HTTP_400_BAD_REQUEST
    return UploadResultResponse.from_result(result)
