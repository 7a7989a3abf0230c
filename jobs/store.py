"""
Job store — the single source of truth for Job and Batch rows.

Every write to a job goes through this class:

    create_job()       new row in pending; rejects a reused external job id
    update_job()       partial state change, checked against jobs/state.py
    reset_for_retry()  failed → pending with a fresh external job id
    cancel_job()       pending/processing → cancelled
    mark_delivered()   delivered flag + timestamp, set exactly once

Every job write is conditional on the row's version_id. A write planned
against a copy that another session has since changed raises
ConcurrentUpdate and leaves the row as the other session left it.

Whenever a batch member is created, reaches a terminal state, or is reset,
the batch's cached counters are recomputed from the jobs table
(refresh_batch). They are never incremented in place.

One store wraps one AsyncSession; it commits after each write.
"""

import logging
import uuid
from typing import Any, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from jobs.errors import (
    AlreadyDelivered,
    BatchNotFound,
    ConcurrentUpdate,
    DuplicateExternalJobId,
    JobNotFound,
    NotCancellable,
    NotFailed,
)
from jobs.state import derive_batch_status, plan_changes
from jobs.types import DispatchParams, JobFilters, JobStats, JobUpdate
from models.base import utcnow
from models.batch import Batch
from models.enums import ACTIVE_STATUSES, BatchStatus, JobPriority, JobStatus
from models.job import Job

logger = logging.getLogger(__name__)


class JobStore:

    def __init__(self, session: AsyncSession):
        self._session = session

    # ── Jobs: create / read ─────────────────────────────────────

    async def create_job(self, params: DispatchParams, external_job_id: str) -> Job:
        """Persist a freshly dispatched job in pending."""
        existing = await self.get_job_by_external_id(external_job_id)
        if existing is not None:
            raise DuplicateExternalJobId(external_job_id, str(existing.id))

        if params.batch_id is not None:
            await self.get_batch(params.batch_id, params.shop)

        now = utcnow()
        job = Job(
            shop=params.shop,
            external_job_id=external_job_id,
            batch_id=params.batch_id,
            tool_id=params.tool_id,
            tool_name=params.tool_name,
            input_url=params.input_url,
            parameters=params.parameters or None,
            job_metadata=params.metadata or None,
            status=JobStatus.PENDING.value,
            priority=JobPriority(params.priority).value,
            progress=0,
            credits_used=0,
            destination_id=params.destination_id,
            destination_title=params.destination_title,
            variant_id=params.variant_id,
            source_media_id=params.source_media_id,
            delivered=False,
            created_at=now,
            updated_at=now,
        )
        self._session.add(job)
        try:
            await self._session.commit()
        except IntegrityError:
            # lost a race with a concurrent create for the same external id
            await self._session.rollback()
            raise DuplicateExternalJobId(external_job_id) from None

        logger.info(f"Tracking job {job.id} ({external_job_id}) for {params.shop}")

        if job.batch_id is not None:
            await self.refresh_batch(job.batch_id)
        return job

    async def get_job(self, job_id: uuid.UUID, shop: str) -> Job:
        result = await self._session.execute(
            select(Job).where(Job.id == job_id, Job.shop == shop)
        )
        job = result.scalar_one_or_none()
        if job is None:
            raise JobNotFound(f"Job {job_id} not found")
        return job

    async def get_jobs(self, job_ids: Iterable[uuid.UUID], shop: str) -> dict[uuid.UUID, Job]:
        ids = list(job_ids)
        if not ids:
            return {}
        result = await self._session.execute(
            select(Job).where(Job.id.in_(ids), Job.shop == shop)
        )
        return {job.id: job for job in result.scalars().all()}

    async def get_job_by_external_id(self, external_job_id: str) -> Optional[Job]:
        result = await self._session.execute(
            select(Job).where(Job.external_job_id == external_job_id)
        )
        return result.scalar_one_or_none()

    async def reload(self, job: Job) -> Job:
        """Re-read a job from the database, discarding whatever this session holds."""
        await self._session.refresh(job)
        return job

    async def list_jobs(
        self, filters: JobFilters, limit: int = 50, offset: int = 0
    ) -> tuple[list[Job], int]:
        """Filtered page of jobs, most recent first, plus the total match count."""
        conditions = [Job.shop == filters.shop]
        if filters.status is not None:
            conditions.append(Job.status == JobStatus(filters.status).value)
        if filters.tool_id:
            conditions.append(Job.tool_id == filters.tool_id)
        if filters.destination_id:
            conditions.append(Job.destination_id == filters.destination_id)
        if filters.batch_id is not None:
            conditions.append(Job.batch_id == filters.batch_id)
        if filters.from_date is not None:
            conditions.append(Job.created_at >= filters.from_date)
        if filters.to_date is not None:
            conditions.append(Job.created_at <= filters.to_date)

        total = (
            await self._session.execute(select(func.count(Job.id)).where(*conditions))
        ).scalar() or 0

        query = (
            select(Job)
            .where(*conditions)
            .order_by(Job.created_at.desc(), Job.id)
            .offset(offset)
            .limit(limit)
        )
        jobs = (await self._session.execute(query)).scalars().all()
        return list(jobs), total

    async def list_active_jobs(
        self, limit: int, after: Optional[uuid.UUID] = None
    ) -> list[Job]:
        """Non-terminal jobs across all shops in id order, starting after `after`."""
        conditions = [Job.status.in_([s.value for s in ACTIVE_STATUSES])]
        if after is not None:
            conditions.append(Job.id > after)
        query = select(Job).where(*conditions).order_by(Job.id).limit(limit)
        return list((await self._session.execute(query)).scalars().all())

    # ── Jobs: state changes ─────────────────────────────────────

    async def update_job(self, job: Job, update: JobUpdate) -> Job:
        """
        Apply a partial update. A no-op update leaves the row (and updated_at) untouched.

        Raises InvalidTransition if the requested status isn't reachable, and
        ConcurrentUpdate if the row changed since `job` was read.
        """
        now = utcnow()
        changes = plan_changes(job, update, now)
        if not changes:
            return job

        previous_status = job.status
        self._apply(job, changes, now)
        await self._commit_job(job)

        if "status" in changes:
            logger.info(f"Job {job.id}: {previous_status} → {job.status}")
            if job.is_terminal and job.batch_id is not None:
                await self.refresh_batch(job.batch_id)
        return job

    async def reset_for_retry(self, job: Job, new_external_job_id: str) -> Job:
        """failed → pending under a new external job id; clears error, progress and timestamps."""
        if job.status != JobStatus.FAILED.value:
            raise NotFailed(f"Job {job.id} is {job.status}; only failed jobs can be retried")

        existing = await self.get_job_by_external_id(new_external_job_id)
        if existing is not None:
            raise DuplicateExternalJobId(new_external_job_id, str(existing.id))

        now = utcnow()
        previous_external_id = job.external_job_id
        self._apply(job, {
            "status": JobStatus.PENDING.value,
            "external_job_id": new_external_job_id,
            "error_message": None,
            "progress": 0,
            "output_url": None,
            "thumbnail_url": None,
            "processing_time_ms": None,
            "started_at": None,
            "completed_at": None,
        }, now)
        try:
            await self._commit_job(job)
        except IntegrityError:
            await self._session.rollback()
            raise DuplicateExternalJobId(new_external_job_id) from None

        logger.info(
            f"Job {job.id} reset for retry: {previous_external_id} → {new_external_job_id}"
        )
        if job.batch_id is not None:
            await self.refresh_batch(job.batch_id)
        return job

    async def cancel_job(self, job: Job) -> Job:
        if job.is_terminal:
            raise NotCancellable(f"Job {job.id} is {job.status} and can no longer be cancelled")
        return await self.update_job(job, JobUpdate(status=JobStatus.CANCELLED))

    async def mark_delivered(
        self, job: Job, media_id: Optional[str], destination_id: Optional[str] = None
    ) -> Job:
        if job.delivered:
            raise AlreadyDelivered(f"Job {job.id} was already delivered")
        now = utcnow()
        changes: dict[str, Any] = {
            "delivered": True,
            "delivered_at": now,
            "delivered_media_id": media_id,
        }
        if destination_id and job.destination_id is None:
            changes["destination_id"] = destination_id
        self._apply(job, changes, now)
        await self._commit_job(job)
        logger.info(f"Job {job.id} delivered to {job.destination_id} as {media_id}")
        return job

    async def _commit_job(self, job: Job) -> None:
        job_id = job.id
        try:
            await self._session.commit()
        except StaleDataError:
            await self._session.rollback()
            logger.info(f"Job {job_id} changed underneath this write; nothing written")
            raise ConcurrentUpdate(
                f"Job {job_id} was changed by another request", details={"job_id": str(job_id)}
            ) from None

    @staticmethod
    def _apply(target: Any, changes: dict[str, Any], now) -> None:
        for column, value in changes.items():
            setattr(target, column, value)
        target.updated_at = now

    # ── Statistics ──────────────────────────────────────────────

    async def compute_stats(self, shop: str) -> JobStats:
        """Counts per status, credits, mean processing time and success rate, computed fresh."""
        query = select(
            func.count(Job.id).label("total"),
            *(
                func.count(Job.id).filter(Job.status == status.value).label(status.value)
                for status in JobStatus
            ),
            func.count(Job.id).filter(Job.delivered.is_(True)).label("delivered"),
            func.coalesce(func.sum(Job.credits_used), 0).label("credits_used"),
            func.avg(Job.processing_time_ms)
            .filter(Job.processing_time_ms > 0)
            .label("average_processing_time_ms"),
        ).where(Job.shop == shop)
        row = (await self._session.execute(query)).one()

        finished = row.completed + row.failed
        return JobStats(
            total=row.total,
            pending=row.pending,
            processing=row.processing,
            completed=row.completed,
            failed=row.failed,
            cancelled=row.cancelled,
            delivered=row.delivered,
            credits_used=int(row.credits_used or 0),
            average_processing_time_ms=(
                round(float(row.average_processing_time_ms), 1)
                if row.average_processing_time_ms is not None
                else None
            ),
            success_rate=round(row.completed / finished, 4) if finished else None,
        )

    # ── Batches ─────────────────────────────────────────────────

    async def create_batch(
        self,
        shop: str,
        tool_id: str,
        name: Optional[str] = None,
        tool_name: Optional[str] = None,
        parameters: Optional[dict[str, Any]] = None,
    ) -> Batch:
        now = utcnow()
        batch = Batch(
            shop=shop,
            tool_id=tool_id,
            name=name,
            tool_name=tool_name,
            parameters=parameters or None,
            status=BatchStatus.PENDING.value,
            total_jobs=0,
            completed_jobs=0,
            failed_jobs=0,
            cancelled_jobs=0,
            total_credits_used=0,
            created_at=now,
            updated_at=now,
        )
        self._session.add(batch)
        await self._session.commit()
        logger.info(f"Created batch {batch.id} [{tool_id}] for {shop}")
        return batch

    async def get_batch(self, batch_id: uuid.UUID, shop: str) -> Batch:
        result = await self._session.execute(
            select(Batch).where(Batch.id == batch_id, Batch.shop == shop)
        )
        batch = result.scalar_one_or_none()
        if batch is None:
            raise BatchNotFound(f"Batch {batch_id} not found")
        return batch

    async def list_batches(
        self,
        shop: str,
        status: Optional[BatchStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Batch], int]:
        conditions = [Batch.shop == shop]
        if status is not None:
            conditions.append(Batch.status == BatchStatus(status).value)

        total = (
            await self._session.execute(select(func.count(Batch.id)).where(*conditions))
        ).scalar() or 0
        query = (
            select(Batch)
            .where(*conditions)
            .order_by(Batch.created_at.desc(), Batch.id)
            .offset(offset)
            .limit(limit)
        )
        batches = (await self._session.execute(query)).scalars().all()
        return list(batches), total

    async def refresh_batch(self, batch_id: uuid.UUID) -> Batch:
        """Recompute a batch's counters and status from its member jobs."""
        query = select(
            func.count(Job.id).label("total"),
            func.count(Job.id).filter(Job.status == JobStatus.COMPLETED.value).label("completed"),
            func.count(Job.id).filter(Job.status == JobStatus.FAILED.value).label("failed"),
            func.count(Job.id).filter(Job.status == JobStatus.CANCELLED.value).label("cancelled"),
            func.count(Job.id)
            .filter(Job.status.in_([s.value for s in ACTIVE_STATUSES]))
            .label("active"),
            func.coalesce(func.sum(Job.credits_used), 0).label("credits_used"),
        ).where(Job.batch_id == batch_id)
        row = (await self._session.execute(query)).one()

        batch = await self._session.get(Batch, batch_id)
        if batch is None:
            raise BatchNotFound(f"Batch {batch_id} not found")

        status = derive_batch_status(
            row.total, row.completed, row.failed, row.cancelled, row.active
        )
        now = utcnow()
        previous_status = batch.status
        batch.total_jobs = row.total
        batch.completed_jobs = row.completed
        batch.failed_jobs = row.failed
        batch.cancelled_jobs = row.cancelled
        batch.total_credits_used = int(row.credits_used or 0)
        batch.status = status.value
        if row.total and batch.started_at is None:
            batch.started_at = now
        if status == BatchStatus.PENDING:
            batch.completed_at = None
        elif batch.completed_at is None:
            batch.completed_at = now
        batch.updated_at = now
        await self._session.commit()

        if previous_status != batch.status:
            logger.info(f"Batch {batch.id}: {previous_status} → {batch.status}")
        return batch
