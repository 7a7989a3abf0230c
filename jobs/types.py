"""
Parameter and result objects for the job layer.

Like SchedulableJob-style DTOs: plain dataclasses, no SQLAlchemy, so they
can be built in tests and by the API layer without a database.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from models.enums import JobPriority, JobStatus
from models.job import Job


@dataclass
class DispatchParams:
    """Everything needed to submit one job and track it locally."""
    shop: str
    tool_id: str
    input_url: str
    tool_name: Optional[str] = None
    parameters: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)
    priority: JobPriority = JobPriority.NORMAL
    destination_id: Optional[str] = None
    destination_title: Optional[str] = None
    variant_id: Optional[str] = None
    source_media_id: Optional[str] = None
    batch_id: Optional[uuid.UUID] = None


@dataclass
class BatchItem:
    """One input of a batch dispatch; tool and parameters come from the batch."""
    input_url: str
    destination_id: Optional[str] = None
    destination_title: Optional[str] = None
    variant_id: Optional[str] = None
    source_media_id: Optional[str] = None


@dataclass
class JobUpdate:
    """
    A partial state change. None means "leave as is".

    JobStore.update_job() is the only thing that applies one, and it
    enforces the state machine (see jobs/state.py) while doing so.
    """
    status: Optional[JobStatus] = None
    progress: Optional[int] = None
    output_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = None
    credits_used: Optional[int] = None
    processing_time_ms: Optional[int] = None
    started_at: Optional[datetime] = None


@dataclass
class JobFilters:
    shop: str
    status: Optional[JobStatus] = None
    tool_id: Optional[str] = None
    destination_id: Optional[str] = None
    batch_id: Optional[uuid.UUID] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


@dataclass
class JobStats:
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    delivered: int = 0
    credits_used: int = 0
    average_processing_time_ms: Optional[float] = None  # over jobs that reported a time
    success_rate: Optional[float] = None  # completed / (completed + failed)


@dataclass
class SyncOutcome:
    """Per-job result of a bulk sync: either the fresh job or the error that stopped it."""
    job_id: uuid.UUID
    job: Optional[Job] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DispatchOutcome:
    """Per-input result of a batch dispatch."""
    input_url: str
    job: Optional[Job] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class DeliveryParams:
    """Caller overrides for Deliver. Anything left None falls back to the job's own fields."""
    destination_id: Optional[str] = None
    alt_text: Optional[str] = None
    replace_media_id: Optional[str] = None
    replace_source: bool = False  # replace the catalog image the job's input came from
    set_primary: bool = False
    position: Optional[int] = None
