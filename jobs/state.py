"""
Job state machine and batch aggregation rules.

    pending ──► processing ──► completed
       │            │      ├──► failed ──(retry)──► pending
       │            │      └──► cancelled
       └────────────┴─────────► completed / failed / cancelled

pending may jump straight to a terminal state: the external job can finish
between two polls. Terminal states accept no update at all; the one way
back is failed → pending, and only JobStore.reset_for_retry() does that.

Everything here is pure: plan_changes() looks at a job and a requested
update and returns the column changes. JobStore applies and commits them.
"""

from datetime import datetime
from typing import Any

from jobs.errors import InvalidTransition
from jobs.types import JobUpdate
from models.enums import BatchStatus, JobStatus
from models.job import Job

ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({
        JobStatus.PENDING,
        JobStatus.PROCESSING,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.PROCESSING: frozenset({
        JobStatus.PROCESSING,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
        JobStatus.CANCELLED,
    }),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

DEFAULT_FAILURE_MESSAGE = "Processing failed"


def can_transition(current: JobStatus, target: JobStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def clamp_progress(value: int) -> int:
    return max(0, min(100, int(value)))


def plan_changes(job: Job, update: JobUpdate, now: datetime) -> dict[str, Any]:
    """
    Work out which columns change if `update` is applied to `job`.

    Returns {} when nothing would change. Raises InvalidTransition when the
    requested status is not reachable from the job's current status.
    """
    current = JobStatus(job.status)
    target = JobStatus(update.status) if update.status is not None else current

    if current.is_terminal:
        if target != current:
            raise InvalidTransition(
                f"Job {job.id} is {current.value}; cannot move to {target.value}"
            )
        return {}

    if not can_transition(current, target):
        raise InvalidTransition(
            f"Job {job.id} cannot move from {current.value} to {target.value}"
        )

    wanted: dict[str, Any] = {}
    if target != current:
        wanted["status"] = target.value

    # Progress: never goes backwards while running, pinned to 100 on success
    if target == JobStatus.COMPLETED:
        wanted["progress"] = 100
    elif not target.is_terminal and update.progress is not None:
        wanted["progress"] = max(job.progress or 0, clamp_progress(update.progress))

    if update.output_url is not None:
        wanted["output_url"] = update.output_url
    if update.thumbnail_url is not None:
        wanted["thumbnail_url"] = update.thumbnail_url
    if update.credits_used is not None:
        wanted["credits_used"] = max(0, int(update.credits_used))
    if update.processing_time_ms is not None:
        wanted["processing_time_ms"] = max(0, int(update.processing_time_ms))

    # Error message lives only in the failed state
    if target == JobStatus.FAILED:
        wanted["error_message"] = (
            update.error_message or job.error_message or DEFAULT_FAILURE_MESSAGE
        )
    else:
        wanted["error_message"] = None

    if job.started_at is None:
        if update.started_at is not None:
            wanted["started_at"] = update.started_at
        elif target == JobStatus.PROCESSING:
            wanted["started_at"] = now

    if target.is_terminal:
        wanted["completed_at"] = now

    return {
        column: value
        for column, value in wanted.items()
        if getattr(job, column) != value
    }


def derive_batch_status(
    total: int, completed: int, failed: int, cancelled: int, active: int
) -> BatchStatus:
    """Aggregate status of a batch from its member counts."""
    if total == 0 or active > 0:
        return BatchStatus.PENDING
    if completed == total:
        return BatchStatus.COMPLETED
    if failed == total:
        return BatchStatus.FAILED
    if failed > 0 and completed > 0:
        return BatchStatus.PARTIALLY_FAILED
    return BatchStatus.CANCELLED
