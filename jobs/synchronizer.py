"""
Job synchronizer — reconciles local jobs with the external job API.

The job API is the authority on how a job is doing; the local row is a
cache of it. sync() fetches the external state and asks the store to apply
it, mapped onto the local state machine:

    external queued      → pending     (status unchanged if already processing)
    external running     → processing
    external succeeded   → completed   (output_url populated; without one, still processing)
    external error       → failed      (error_message populated)
    external cancelled   → cancelled

Progress only ever moves forward: max(local, external).

The fetch is slow and the row may change while it is in flight (another
sync, a cancel). The write is planned against the row as read and is
conditional on its version; if another session got there first the row is
re-read and the update re-planned, so a stale snapshot never moves a job
out of a terminal state.

sync() is idempotent — polling again with no external change writes nothing —
and a terminal job is returned untouched without calling the API at all.
Callers decide when to poll (see worker/poller.py); nothing here runs on a
timer.

retry() is different: it re-submits a *failed* job's original parameters as
brand-new work, because the job API has no resume.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from clients.errors import ClientError
from clients.job_api import ExternalJobState, JobApiClient
from clients.retry import RetryPolicy
from jobs.errors import ConcurrentUpdate, DispatchFailed, JobError, NotFailed
from jobs.state import can_transition
from jobs.store import JobStore
from jobs.types import JobUpdate, SyncOutcome
from models.enums import ExternalJobStatus, JobPriority, JobStatus
from models.job import Job

logger = logging.getLogger(__name__)

# Re-plans after losing a write race before giving up with ConcurrentUpdate
APPLY_ATTEMPTS = 3

EXTERNAL_TO_LOCAL: dict[ExternalJobStatus, JobStatus] = {
    ExternalJobStatus.QUEUED: JobStatus.PENDING,
    ExternalJobStatus.RUNNING: JobStatus.PROCESSING,
    ExternalJobStatus.SUCCEEDED: JobStatus.COMPLETED,
    ExternalJobStatus.ERROR: JobStatus.FAILED,
    ExternalJobStatus.CANCELLED: JobStatus.CANCELLED,
}


def _parse_timestamp(raw: Optional[str]) -> Optional[datetime]:
    if not raw or not isinstance(raw, str):
        return None
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except ValueError:
        return None


def build_update(job: Job, state: ExternalJobState) -> JobUpdate:
    """Translate an external snapshot into a JobUpdate for `job`."""
    status: Optional[JobStatus] = EXTERNAL_TO_LOCAL[state.status]
    if status == JobStatus.COMPLETED and not state.output_url:
        # nothing to deliver yet; keep polling until the output shows up
        logger.warning(
            f"Job {job.id}: {state.external_job_id} succeeded without an output URL"
        )
        status = JobStatus.PROCESSING
    if not can_transition(JobStatus(job.status), status):
        # e.g. the API briefly reports "queued" for a job we've already seen running
        status = None

    update = JobUpdate(
        status=status,
        progress=state.progress,
        thumbnail_url=state.thumbnail_url,
        credits_used=state.credits_used,
        processing_time_ms=state.processing_time_ms,
        started_at=_parse_timestamp(state.started_at),
    )
    if status == JobStatus.COMPLETED:
        update.output_url = state.output_url
    elif status == JobStatus.FAILED:
        update.error_message = state.error_message
    return update


class JobSynchronizer:

    def __init__(
        self,
        session: AsyncSession,
        job_api: JobApiClient,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._store = JobStore(session)
        self._job_api = job_api
        self._retry = retry_policy or RetryPolicy.from_settings()

    async def sync(self, job_id: uuid.UUID, shop: str) -> Job:
        """
        Refresh one job from the job API.

        If the API stays unreachable after retries, the ClientError propagates
        and the job is left exactly as it was; the next poll will try again.
        """
        job = await self._store.get_job(job_id, shop)
        if job.is_terminal:
            return job
        state = await self._fetch(job)
        return await self._apply(job_id, job, state)

    async def bulk_sync(self, job_ids: Iterable[uuid.UUID], shop: str) -> list[SyncOutcome]:
        """
        Refresh many jobs. External lookups run concurrently; one failing
        lookup is reported on its own outcome and never stops the others.
        """
        ids = list(dict.fromkeys(job_ids))
        jobs = await self._store.get_jobs(ids, shop)

        active = [jobs[i] for i in ids if i in jobs and not jobs[i].is_terminal]
        fetched = await asyncio.gather(
            *(self._fetch(job) for job in active), return_exceptions=True
        )
        states = {job.id: result for job, result in zip(active, fetched)}

        outcomes: list[SyncOutcome] = []
        for job_id in ids:
            job = jobs.get(job_id)
            if job is None:
                outcomes.append(SyncOutcome(job_id=job_id, error=f"Job {job_id} not found"))
                continue
            if job_id not in states:
                outcomes.append(SyncOutcome(job_id=job_id, job=job))
                continue

            state = states[job_id]
            if isinstance(state, BaseException):
                if not isinstance(state, Exception):
                    raise state
                if not isinstance(state, ClientError):
                    logger.error(f"Unexpected error syncing job {job_id}", exc_info=state)
                else:
                    logger.warning(f"Could not sync job {job_id}: {state}")
                outcomes.append(SyncOutcome(job_id=job_id, job=job, error=str(state)))
                continue

            try:
                job = await self._apply(job_id, job, state)
            except JobError as e:
                logger.warning(f"Could not apply sync for job {job_id}: {e}")
                job = await self._store.reload(job)
                outcomes.append(SyncOutcome(job_id=job_id, job=job, error=e.message))
                continue
            outcomes.append(SyncOutcome(job_id=job_id, job=job))

        return outcomes

    async def retry(self, job_id: uuid.UUID, shop: str) -> Job:
        """Re-dispatch a failed job as new work and put it back in pending."""
        job = await self._store.get_job(job_id, shop)
        if job.status != JobStatus.FAILED.value:
            raise NotFailed(f"Job {job.id} is {job.status}; only failed jobs can be retried")

        try:
            new_external_id = await self._job_api.submit(
                tool_id=job.tool_id,
                input_url=job.input_url,
                parameters=job.parameters,
                priority=JobPriority(job.priority),
                metadata=job.job_metadata,
            )
        except ClientError as e:
            raise DispatchFailed(f"Retry dispatch rejected: {e.message}") from e

        return await self._store.reset_for_retry(job, new_external_id)

    async def _apply(self, job_id: uuid.UUID, job: Job, state: ExternalJobState) -> Job:
        for attempt in range(1, APPLY_ATTEMPTS + 1):
            if job.is_terminal:
                return job
            try:
                return await self._store.update_job(job, build_update(job, state))
            except ConcurrentUpdate:
                if attempt == APPLY_ATTEMPTS:
                    raise
                logger.info(f"Job {job_id} changed during sync; re-planning")
                job = await self._store.reload(job)
        return job

    async def _fetch(self, job: Job) -> ExternalJobState:
        external_id = job.external_job_id
        return await self._retry.run(
            lambda: self._job_api.get_status(external_id),
            f"status fetch for {external_id}",
        )
