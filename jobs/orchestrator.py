"""
Job orchestrator — the one entry point the rest of the application calls.

    dispatch_job     validate input → submit to job API → store.create_job
    dispatch_batch   create batch → dispatch every input into it, independently
    sync_job         → JobSynchronizer.sync
    bulk_sync_jobs   → JobSynchronizer.bulk_sync
    retry_job        → JobSynchronizer.retry (failed jobs only)
    cancel_job       pending/processing → cancelled (local only)
    deliver_job      completed + undelivered → staged upload → store.mark_delivered
    get_stats        → store.compute_stats

Ordering rules live here: nothing is submitted for an image that fails
validation, and deliver_job refuses (before any network call) a job that
isn't completed or was already delivered.
"""

import asyncio
import logging
import uuid
from contextlib import nullcontext
from dataclasses import asdict
from typing import Any, Callable, Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from clients.errors import ClientError
from clients.job_api import JobApiClient
from clients.retry import RetryPolicy
from delivery.guard import DeliveryGuard
from delivery.staged_upload import StagedUploadClient
from delivery.types import UploadProgress, UploadRequest, UploadResult
from delivery.validator import ImageValidator
from jobs.errors import (
    AlreadyDelivered,
    DispatchFailed,
    JobError,
    MissingDestination,
    MissingOutput,
    NotCompleted,
    ValidationFailed,
)
from jobs.store import JobStore
from jobs.synchronizer import JobSynchronizer
from jobs.types import (
    BatchItem,
    DeliveryParams,
    DispatchOutcome,
    DispatchParams,
    JobFilters,
    JobStats,
    SyncOutcome,
)
from models.batch import Batch
from models.enums import BatchStatus, JobPriority, JobStatus
from models.job import Job

logger = logging.getLogger(__name__)


class JobOrchestrator:

    def __init__(
        self,
        session: AsyncSession,
        job_api: JobApiClient,
        uploader: StagedUploadClient,
        validator: ImageValidator,
        retry_policy: Optional[RetryPolicy] = None,
        guard: Optional[DeliveryGuard] = None,
    ):
        self._store = JobStore(session)
        self._synchronizer = JobSynchronizer(session, job_api, retry_policy)
        self._job_api = job_api
        self._uploader = uploader
        self._validator = validator
        self._guard = guard

    # ── Dispatch ────────────────────────────────────────────────

    async def dispatch_job(self, params: DispatchParams) -> Job:
        """
        Validate, submit, persist. Raises ValidationFailed or DispatchFailed
        with nothing persisted, or DuplicateExternalJobId if the job API hands
        back an id that is already tracked.
        """
        if params.batch_id is not None:
            await self._store.get_batch(params.batch_id, params.shop)
        external_job_id = await self._submit(params)
        return await self._store.create_job(params, external_job_id)

    async def dispatch_batch(
        self,
        shop: str,
        tool_id: str,
        items: list[BatchItem],
        name: Optional[str] = None,
        tool_name: Optional[str] = None,
        parameters: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        priority: JobPriority = JobPriority.NORMAL,
    ) -> tuple[Batch, list[DispatchOutcome]]:
        """Create a batch and dispatch every item into it. One bad item never aborts the others."""
        batch = await self._store.create_batch(
            shop, tool_id, name=name, tool_name=tool_name, parameters=parameters
        )
        all_params = [
            DispatchParams(
                shop=shop,
                tool_id=tool_id,
                tool_name=tool_name,
                input_url=item.input_url,
                parameters=dict(parameters or {}),
                metadata=dict(metadata or {}),
                priority=priority,
                destination_id=item.destination_id,
                destination_title=item.destination_title,
                variant_id=item.variant_id,
                source_media_id=item.source_media_id,
                batch_id=batch.id,
            )
            for item in items
        ]

        # Validation and submission are network-bound: run them side by side
        submitted = await asyncio.gather(
            *(self._submit(p) for p in all_params), return_exceptions=True
        )

        outcomes: list[DispatchOutcome] = []
        for params, result in zip(all_params, submitted):
            if isinstance(result, BaseException):
                if not isinstance(result, JobError):
                    raise result
                outcomes.append(DispatchOutcome(input_url=params.input_url, error=result.message))
                continue
            try:
                job = await self._store.create_job(params, result)
            except JobError as e:
                outcomes.append(DispatchOutcome(input_url=params.input_url, error=e.message))
                continue
            outcomes.append(DispatchOutcome(input_url=params.input_url, job=job))

        batch = await self._store.refresh_batch(batch.id)
        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(
            f"Batch {batch.id}: dispatched {len(outcomes) - failed}/{len(outcomes)} jobs"
        )
        return batch, outcomes

    async def _submit(self, params: DispatchParams) -> str:
        validation = await self._validator.validate(params.input_url)
        if not validation.valid:
            logger.info(f"Rejected input {params.input_url}: {validation.reason}")
            raise ValidationFailed(validation.reason or "Invalid image", details=asdict(validation))
        try:
            return await self._job_api.submit(
                tool_id=params.tool_id,
                input_url=params.input_url,
                parameters=params.parameters,
                priority=params.priority,
                metadata=params.metadata,
            )
        except ClientError as e:
            logger.warning(f"Job API refused {params.tool_id} for {params.input_url}: {e}")
            raise DispatchFailed(f"Dispatch rejected: {e.message}", details=e.details) from e

    # ── Sync / retry / cancel ───────────────────────────────────

    async def sync_job(self, job_id: uuid.UUID, shop: str) -> Job:
        return await self._synchronizer.sync(job_id, shop)

    async def bulk_sync_jobs(self, job_ids: Iterable[uuid.UUID], shop: str) -> list[SyncOutcome]:
        return await self._synchronizer.bulk_sync(job_ids, shop)

    async def retry_job(self, job_id: uuid.UUID, shop: str) -> Job:
        return await self._synchronizer.retry(job_id, shop)

    async def cancel_job(self, job_id: uuid.UUID, shop: str) -> Job:
        job = await self._store.get_job(job_id, shop)
        return await self._store.cancel_job(job)

    # ── Delivery ────────────────────────────────────────────────

    async def deliver_job(
        self,
        job_id: uuid.UUID,
        shop: str,
        params: Optional[DeliveryParams] = None,
        on_progress: Optional[Callable[[UploadProgress], None]] = None,
    ) -> UploadResult:
        """Push a completed job's output into the catalog, exactly once."""
        params = params or DeliveryParams()
        job = await self._store.get_job(job_id, shop)
        destination_id = self._check_deliverable(job, params)

        lock = self._guard.hold(str(job.id)) if self._guard is not None else nullcontext()
        async with lock:
            # another caller may have delivered between our read and the lock
            job = await self._store.reload(job)
            self._check_deliverable(job, params)

            replace_media_id = params.replace_media_id or (
                job.source_media_id if params.replace_source else None
            )
            request = UploadRequest(
                destination_id=destination_id,
                source_url=job.output_url,
                alt_text=params.alt_text or f"Processed by {job.tool_name or job.tool_id}",
                replace_media_id=replace_media_id,
                set_primary=params.set_primary,
                position=params.position,
            )
            result = await self._uploader.upload(request, on_progress)

            if result.success:
                await self._store.mark_delivered(job, result.media_id, destination_id)
            elif self._guard is not None:
                await self._guard.record_failure(str(job.id), shop, destination_id, result)
            else:
                logger.warning(f"Delivery of job {job.id} failed: {result.error}")
        return result

    @staticmethod
    def _check_deliverable(job: Job, params: DeliveryParams) -> str:
        if job.status != JobStatus.COMPLETED.value:
            raise NotCompleted(f"Job {job.id} is {job.status}; only completed jobs can be delivered")
        if job.delivered:
            raise AlreadyDelivered(f"Job {job.id} was already delivered")
        destination_id = params.destination_id or job.destination_id
        if not destination_id:
            raise MissingDestination(f"Job {job.id} has no destination product")
        if not job.output_url:
            raise MissingOutput(f"Job {job.id} has no output image")
        return destination_id

    # ── Reads ───────────────────────────────────────────────────

    async def get_job(self, job_id: uuid.UUID, shop: str) -> Job:
        return await self._store.get_job(job_id, shop)

    async def list_jobs(
        self, filters: JobFilters, limit: int = 50, offset: int = 0
    ) -> tuple[list[Job], int]:
        return await self._store.list_jobs(filters, limit=limit, offset=offset)

    async def get_stats(self, shop: str) -> JobStats:
        return await self._store.compute_stats(shop)

    async def get_batch(self, batch_id: uuid.UUID, shop: str) -> Batch:
        return await self._store.get_batch(batch_id, shop)

    async def list_batches(
        self,
        shop: str,
        status: Optional[BatchStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Batch], int]:
        return await self._store.list_batches(shop, status=status, limit=limit, offset=offset)

    async def refresh_batch(self, batch_id: uuid.UUID, shop: str) -> Batch:
        await self._store.get_batch(batch_id, shop)
        return await self._store.refresh_batch(batch_id)
