"""
Pydantic schemas for the /batches endpoints.

A batch dispatch sends one tool with one set of parameters over many input
images. The response carries the batch plus a per-input outcome, so a
caller can see which inputs were rejected without the others failing.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field, HttpUrl

from api.schemas.job import JobResponse
from models.enums import JobPriority


class BatchItemIn(BaseModel):
    input_url: HttpUrl
    destination_id: Optional[str] = None
    destination_title: Optional[str] = None
    variant_id: Optional[str] = None
    source_media_id: Optional[str] = None


class BatchDispatch(BaseModel):
    """Request body for POST /batches/."""

    tool_id: str = Field(..., min_length=1, max_length=255)
    tool_name: Optional[str] = Field(default=None, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    parameters: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL
    items: list[BatchItemIn] = Field(..., min_length=1, max_length=100)


class BatchResponse(BaseModel):
    id: UUID
    shop: str
    name: Optional[str] = None
    tool_id: str
    tool_name: Optional[str] = None
    parameters: Optional[dict[str, Any]] = None
    status: str
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    cancelled_jobs: int
    total_credits_used: int
    progress: int
    success_rate: Optional[float] = None
    created_at: datetime
    updated_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DispatchOutcomeResponse(BaseModel):
    input_url: str
    ok: bool
    job: Optional[JobResponse] = None
    error: Optional[str] = None


class BatchDispatchResponse(BaseModel):
    batch: BatchResponse
    results: list[DispatchOutcomeResponse]
    dispatched: int
    rejected: int


class BatchListResponse(BaseModel):
    batches: list[BatchResponse]
    total: int
    page: int
    page_size: int
