"""
Pydantic schemas for the /jobs endpoints.

These are NOT database models — they define the HTTP API contract:
- JobDispatch: what the caller sends to dispatch one job (request body)
- JobResponse: what we send back for a single job (response body)
- JobListResponse: paginated list of jobs
- JobStats: per-shop aggregate statistics
- BulkSyncRequest / BulkSyncResponse: refresh many jobs in one call
- DeliveryRequest: overrides for pushing a job's output to the catalog

FastAPI validates incoming data against these automatically.
If someone sends priority="asap", FastAPI returns a 422 error before our code even runs.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, HttpUrl

from models.enums import JobPriority


class JobDispatch(BaseModel):
    """Request body for POST /jobs/."""

    tool_id: str = Field(..., min_length=1, max_length=255, examples=["background-removal"])
    tool_name: Optional[str] = Field(default=None, max_length=255)
    input_url: HttpUrl = Field(..., examples=["https://cdn.example.com/shirt.jpg"])
    parameters: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL

    # where the result should end up (optional; Deliver can also be told later)
    destination_id: Optional[str] = None
    destination_title: Optional[str] = None
    variant_id: Optional[str] = None
    source_media_id: Optional[str] = None
    batch_id: Optional[UUID] = None


class JobResponse(BaseModel):
    """Response body for a single job."""

    id: UUID
    shop: str
    external_job_id: str
    batch_id: Optional[UUID] = None
    tool_id: str
    tool_name: Optional[str] = None
    status: str
    priority: str
    progress: int
    input_url: str
    output_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    parameters: Optional[dict[str, Any]] = None
    # the ORM attribute is job_metadata ("metadata" is reserved by SQLAlchemy)
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias="job_metadata")
    credits_used: int
    processing_time_ms: Optional[int] = None
    error_message: Optional[str] = None
    destination_id: Optional[str] = None
    destination_title: Optional[str] = None
    variant_id: Optional[str] = None
    source_media_id: Optional[str] = None
    delivered: bool
    delivered_at: Optional[datetime] = None
    delivered_media_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    # from_attributes=True tells Pydantic to read from SQLAlchemy model attributes
    model_config = {"from_attributes": True}


class JobListResponse(BaseModel):
    """Paginated list of jobs — returned by GET /jobs/."""

    jobs: list[JobResponse]
    total: int       # total matching jobs (ignoring pagination)
    page: int
    page_size: int


class JobStats(BaseModel):
    """Aggregate job statistics for one shop — returned by GET /jobs/stats."""

    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    cancelled: int
    delivered: int
    credits_used: int
    average_processing_time_ms: Optional[float] = None
    success_rate: Optional[float] = None

    model_config = {"from_attributes": True}


class BulkSyncRequest(BaseModel):
    job_ids: list[UUID] = Field(..., min_length=1, max_length=200)


class SyncOutcomeResponse(BaseModel):
    job_id: UUID
    ok: bool
    job: Optional[JobResponse] = None
    error: Optional[str] = None


class BulkSyncResponse(BaseModel):
    results: list[SyncOutcomeResponse]
    synced: int
    failed: int


class DeliveryRequest(BaseModel):
    """Request body for POST /jobs/{id}/deliver. Every field is optional."""

    destination_id: Optional[str] = None
    alt_text: Optional[str] = Field(default=None, max_length=512)
    replace_media_id: Optional[str] = None
    replace_source: bool = Field(
        default=False,
        description="Replace the catalog image the job's input came from",
    )
    set_primary: bool = False
    position: Optional[int] = Field(default=None, ge=0)


class FailedDelivery(BaseModel):
    job_id: str
    shop: str
    destination_id: str
    error: Optional[str] = None
    step: Optional[str] = None
    failed_at: datetime
