"""
Shared enumerations used across the entire project.

Using Python enums (inheriting from str) means:
- They serialize to JSON automatically ("pending", not "JobStatus.PENDING")
- They work as SQLAlchemy column values
- They work as FastAPI query parameters
"""

import enum


class JobStatus(str, enum.Enum):
    PENDING = "pending"          # dispatched, external job not started yet
    PROCESSING = "processing"    # external job is running
    COMPLETED = "completed"      # output available (terminal)
    FAILED = "failed"            # external job reported an error (terminal, retryable by caller)
    CANCELLED = "cancelled"      # stopped locally (terminal)

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.PROCESSING})


class JobPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class BatchStatus(str, enum.Enum):
    PENDING = "pending"                    # at least one job still running (or no jobs yet)
    COMPLETED = "completed"                # every job completed
    PARTIALLY_FAILED = "partially_failed"  # some completed, some failed
    FAILED = "failed"                      # every job failed
    CANCELLED = "cancelled"                # all terminal, cancellations involved


class ExternalJobStatus(str, enum.Enum):
    """Status vocabulary of the external AI job API."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    ERROR = "error"
    CANCELLED = "cancelled"


class UploadStep(str, enum.Enum):
    VALIDATING = "validating"
    STAGING = "staging"
    TRANSFERRING = "transferring"
    ATTACHING = "attaching"
    COMPLETE = "complete"
