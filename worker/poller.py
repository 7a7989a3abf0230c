"""
Job poller — keeps local jobs in step with the job API.

Nothing in the job layer runs on a timer; this is the caller that decides
when to sync. Every SYNC_INTERVAL_BULK seconds:

    ┌──────────────────────────────────────────────────────────────┐
    │  tick()                                                       │
    │    1. SELECT up to POLL_BATCH_SIZE pending/processing jobs,   │
    │       continuing in id order from where the last tick ended   │
    │       and wrapping round to the start                         │
    │    2. group them by shop                                      │
    │    3. JobSynchronizer.bulk_sync(ids, shop) per group          │
    └──────────────────────────────────────────────────────────────┘

The cursor walks every active job in turn, so with N active jobs each one
is fetched at least once every ceil(N / POLL_BATCH_SIZE) ticks, whether or
not its row ever changes. Only non-terminal jobs are ever selected, so a
job drops out of polling the moment it reaches completed/failed/cancelled.
Each tick uses a fresh session; a tick that blows up is logged and the
loop carries on.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from typing import Optional

from sqlalchemy.ext.asyncio import async_sessionmaker

from clients.job_api import JobApiClient
from clients.retry import RetryPolicy
from config.settings import settings
from jobs.store import JobStore
from jobs.synchronizer import JobSynchronizer
from models.job import Job

logger = logging.getLogger(__name__)


class JobPoller:

    def __init__(
        self,
        session_factory: async_sessionmaker,
        job_api: JobApiClient,
        retry_policy: Optional[RetryPolicy] = None,
        interval: Optional[float] = None,
        batch_size: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._job_api = job_api
        self._retry = retry_policy or RetryPolicy.from_settings()
        self._interval = interval if interval is not None else settings.SYNC_INTERVAL_BULK
        self._batch_size = batch_size or settings.POLL_BATCH_SIZE
        self._cursor: Optional[uuid.UUID] = None

    async def tick(self) -> int:
        """One polling round. Returns how many jobs synced without error."""
        async with self._session_factory() as session:
            active = await self._next_round(JobStore(session))
            if not active:
                return 0

            by_shop: dict[str, list[uuid.UUID]] = defaultdict(list)
            for job in active:
                by_shop[job.shop].append(job.id)

            synchronizer = JobSynchronizer(session, self._job_api, self._retry)
            synced = 0
            for shop, job_ids in by_shop.items():
                outcomes = await synchronizer.bulk_sync(job_ids, shop)
                synced += sum(1 for o in outcomes if o.ok)

        logger.info(f"Poll tick: {synced}/{len(active)} active jobs synced")
        return synced

    async def _next_round(self, store: JobStore) -> list[Job]:
        active = await store.list_active_jobs(self._batch_size, after=self._cursor)
        if len(active) < self._batch_size and self._cursor is not None:
            # wrap round; skip jobs already picked this tick
            seen = {job.id for job in active}
            wrapped = await store.list_active_jobs(self._batch_size - len(active))
            active += [job for job in wrapped if job.id not in seen]
        self._cursor = active[-1].id if active else None
        return active

    async def run(self, stop_event: asyncio.Event) -> None:
        """Poll until stop_event is set."""
        logger.info(
            f"Poller started (every {self._interval}s, up to {self._batch_size} jobs per tick)"
        )
        while not stop_event.is_set():
            try:
                await self.tick()
            except Exception:
                logger.exception("Poll tick failed")

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                pass
        logger.info("Poller stopped")
