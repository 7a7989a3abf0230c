"""
Tests for JobSynchronizer: single sync, bulk sync and retry against the fake job API.
"""

import asyncio
import uuid

import pytest

from clients.errors import JobApiRejected, JobApiUnavailable
from jobs.errors import DispatchFailed, NotFailed
from jobs.store import JobStore
from jobs.synchronizer import JobSynchronizer
from jobs.types import DispatchParams, JobUpdate
from models.enums import JobStatus

SHOP = "demo-shop.myshopify.com"


async def track(session, remote, external_id: str, **fields):
    """Create a local job for external_id and register it on the fake job API."""
    remote.set_job(external_id, status="queued", progress=0)
    remote.set_job(external_id, **fields)
    return await JobStore(session).create_job(
        DispatchParams(
            shop=SHOP,
            tool_id="background-removal",
            input_url=f"https://images.test/{external_id}.png",
            parameters={"bg": "white"},
        ),
        external_id,
    )


@pytest.fixture
def synchronizer(async_session, job_api, retry_policy):
    return JobSynchronizer(async_session, job_api, retry_policy)


@pytest.mark.asyncio
async def test_sync_moves_job_to_processing(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="running", progress=40)

    job = await synchronizer.sync(job.id, SHOP)

    assert job.status == "processing"
    assert job.progress == 40
    assert job.started_at is not None


@pytest.mark.asyncio
async def test_sync_completed_populates_output(async_session, remote, synchronizer):
    job = await track(
        async_session, remote, "ext-1",
        status="succeeded",
        progress=100,
        output_image_url="https://cdn.test/out.png",
        thumbnail_url="https://cdn.test/thumb.png",
        credits_used=2,
        processing_time_ms=5400,
    )

    job = await synchronizer.sync(job.id, SHOP)

    assert job.status == "completed"
    assert job.output_url == "https://cdn.test/out.png"
    assert job.thumbnail_url == "https://cdn.test/thumb.png"
    assert job.credits_used == 2
    assert job.processing_time_ms == 5400
    assert job.completed_at is not None


@pytest.mark.asyncio
async def test_sync_failed_populates_error(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="error", error_message="NSFW content")
    job = await synchronizer.sync(job.id, SHOP)
    assert job.status == "failed"
    assert job.error_message == "NSFW content"


@pytest.mark.asyncio
async def test_sync_accepts_legacy_status_names(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="processing", progress=10)
    job = await synchronizer.sync(job.id, SHOP)
    assert job.status == "processing"


@pytest.mark.asyncio
async def test_sync_is_idempotent(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="running", progress=50)
    job = await synchronizer.sync(job.id, SHOP)
    stamp = job.updated_at

    job = await synchronizer.sync(job.id, SHOP)
    assert job.updated_at == stamp


@pytest.mark.asyncio
async def test_sync_never_moves_processing_back_to_pending(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="running", progress=50)
    await synchronizer.sync(job.id, SHOP)

    remote.set_job("ext-1", status="queued", progress=0)
    job = await synchronizer.sync(job.id, SHOP)

    assert job.status == "processing"
    assert job.progress == 50


@pytest.mark.asyncio
async def test_terminal_job_is_not_fetched(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="succeeded", output_image_url="https://cdn.test/o.png")
    await synchronizer.sync(job.id, SHOP)
    remote.calls.clear()

    job = await synchronizer.sync(job.id, SHOP)

    assert job.status == "completed"
    assert remote.calls == []


@pytest.mark.asyncio
async def test_sync_retries_transient_failures(async_session, remote, synchronizer, sleeps):
    job = await track(async_session, remote, "ext-1", status="running")
    remote.unavailable_jobs.add("ext-1")

    with pytest.raises(JobApiUnavailable):
        await synchronizer.sync(job.id, SHOP)

    assert remote.kinds().count("status") == 3
    assert sleeps == [1.0, 2.0]
    assert job.status == "pending"


@pytest.mark.asyncio
async def test_bulk_sync_isolates_failures(async_session, remote, synchronizer):
    jobs = [
        await track(async_session, remote, f"ext-{i}", status="running", progress=20)
        for i in range(5)
    ]
    remote.unavailable_jobs.add("ext-2")

    outcomes = await synchronizer.bulk_sync([j.id for j in jobs], SHOP)

    assert len(outcomes) == 5
    assert [o.job_id for o in outcomes] == [j.id for j in jobs]
    failed = [o for o in outcomes if not o.ok]
    assert len(failed) == 1
    assert failed[0].job_id == jobs[2].id
    assert all(o.job.status == "processing" for o in outcomes if o.ok)


@pytest.mark.asyncio
async def test_bulk_sync_reports_unknown_ids(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="running")
    missing = uuid.uuid4()

    outcomes = await synchronizer.bulk_sync([job.id, missing, job.id], SHOP)

    assert len(outcomes) == 2
    assert outcomes[0].ok
    assert outcomes[1].job_id == missing
    assert "not found" in outcomes[1].error


@pytest.mark.asyncio
async def test_retry_redispatches_failed_job(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="error", error_message="timeout")
    await synchronizer.sync(job.id, SHOP)
    remote.forced_ids.append("ext-retry")

    job = await synchronizer.retry(job.id, SHOP)

    assert job.status == "pending"
    assert job.external_job_id == "ext-retry"
    assert job.error_message is None
    assert remote.dispatched[-1]["tool_id"] == "background-removal"
    assert remote.dispatched[-1]["parameters"] == {"bg": "white"}


@pytest.mark.asyncio
async def test_retry_requires_failed(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="running")
    with pytest.raises(NotFailed):
        await synchronizer.retry(job.id, SHOP)
    assert "dispatch" not in remote.kinds()


@pytest.mark.asyncio
async def test_retry_dispatch_rejected(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1")
    await JobStore(async_session).update_job(job, JobUpdate(status=JobStatus.FAILED))
    remote.dispatch_status = 402

    with pytest.raises(DispatchFailed):
        await synchronizer.retry(job.id, SHOP)
    assert job.status == "failed"
    assert job.external_job_id == "ext-1"


@pytest.mark.asyncio
async def test_sync_without_output_url_stays_processing(async_session, remote, synchronizer):
    job = await track(async_session, remote, "ext-1", status="succeeded", progress=100)

    job = await synchronizer.sync(job.id, SHOP)

    assert job.status == "processing"
    assert job.output_url is None
    assert job.completed_at is None

    remote.set_job("ext-1", output_image_url="https://cdn.test/out.png")
    job = await synchronizer.sync(job.id, SHOP)

    assert job.status == "completed"
    assert job.output_url == "https://cdn.test/out.png"


@pytest.mark.asyncio
async def test_sync_rejects_non_numeric_progress(async_session, remote, synchronizer, sleeps):
    job = await track(async_session, remote, "ext-1", status="running", progress="halfway")

    with pytest.raises(JobApiRejected):
        await synchronizer.sync(job.id, SHOP)

    assert sleeps == []
    stored = await JobStore(async_session).get_job(job.id, SHOP)
    assert stored.status == "pending"
    assert stored.progress == 0


class HeldJobApi:
    """Answers status fetches from the real client, but only once `release` is set."""

    def __init__(self, job_api):
        self._job_api = job_api
        self.fetched = asyncio.Event()
        self.release = asyncio.Event()

    async def get_status(self, external_job_id: str):
        state = await self._job_api.get_status(external_job_id)
        self.fetched.set()
        await self.release.wait()
        return state


@pytest.mark.asyncio
async def test_interleaved_syncs_never_reopen_a_completed_job(
    session_factory, remote, job_api, retry_policy
):
    async with session_factory() as session:
        job = await track(session, remote, "ext-1", status="running", progress=40)
    held = HeldJobApi(job_api)

    async with session_factory() as slow_session, session_factory() as fast_session:
        slow = asyncio.create_task(
            JobSynchronizer(slow_session, held, retry_policy).sync(job.id, SHOP)
        )
        await held.fetched.wait()

        # the job finishes while the slow sync is holding a "running" snapshot
        remote.set_job(
            "ext-1", status="succeeded", progress=100, output_image_url="https://cdn.test/out.png"
        )
        finished = await JobSynchronizer(fast_session, job_api, retry_policy).sync(job.id, SHOP)
        assert finished.status == "completed"

        held.release.set()
        result = await slow

    assert result.status == "completed"
    assert result.output_url == "https://cdn.test/out.png"

    async with session_factory() as session:
        stored = await JobStore(session).get_job(job.id, SHOP)
    assert stored.status == "completed"
    assert stored.progress == 100
    assert stored.completed_at is not None
    assert stored.output_url == "https://cdn.test/out.png"
