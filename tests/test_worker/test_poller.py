"""
Tests for JobPoller — the caller-side loop that bulk-syncs active jobs.
"""

import asyncio

import pytest

from jobs.store import JobStore
from jobs.types import DispatchParams
from worker.poller import JobPoller


async def seed(session_factory, remote, shop: str, external_id: str, **state):
    remote.set_job(external_id, status="queued", progress=0)
    remote.set_job(external_id, **state)
    async with session_factory() as session:
        return await JobStore(session).create_job(
            DispatchParams(shop=shop, tool_id="upscale", input_url=f"https://images.test/{external_id}.png"),
            external_id,
        )


@pytest.fixture
def poller(session_factory, job_api, retry_policy):
    return JobPoller(session_factory, job_api, retry_policy, interval=0.01, batch_size=10)


@pytest.mark.asyncio
async def test_tick_syncs_active_jobs_across_shops(poller, session_factory, remote):
    await seed(session_factory, remote, "a.myshopify.com", "ext-1", status="running", progress=30)
    await seed(session_factory, remote, "b.myshopify.com", "ext-2", status="succeeded", output_image_url="https://cdn.test/o.png")

    synced = await poller.tick()

    assert synced == 2
    async with session_factory() as session:
        store = JobStore(session)
        first = await store.get_job_by_external_id("ext-1")
        second = await store.get_job_by_external_id("ext-2")
    assert first.status == "processing"
    assert second.status == "completed"


@pytest.mark.asyncio
async def test_terminal_jobs_drop_out_of_polling(poller, session_factory, remote):
    await seed(session_factory, remote, "a.myshopify.com", "ext-1", status="succeeded", output_image_url="https://cdn.test/o.png")
    await poller.tick()
    remote.calls.clear()

    synced = await poller.tick()

    assert synced == 0
    assert remote.calls == []


@pytest.mark.asyncio
async def test_tick_survives_unreachable_job_api(poller, session_factory, remote):
    await seed(session_factory, remote, "a.myshopify.com", "ext-1", status="running")
    await seed(session_factory, remote, "a.myshopify.com", "ext-2", status="running")
    remote.unavailable_jobs.add("ext-1")

    synced = await poller.tick()

    assert synced == 1


@pytest.mark.asyncio
async def test_run_stops_on_event(poller, session_factory, remote):
    await seed(session_factory, remote, "a.myshopify.com", "ext-1", status="running")
    stop = asyncio.Event()

    task = asyncio.create_task(poller.run(stop))
    await asyncio.sleep(0.05)
    stop.set()
    await asyncio.wait_for(task, timeout=1)

    assert remote.kinds().count("status") >= 1


@pytest.mark.asyncio
async def test_every_active_job_is_reached_when_backlog_exceeds_batch(
    session_factory, job_api, retry_policy, remote
):
    poller = JobPoller(session_factory, job_api, retry_policy, interval=0.01, batch_size=2)
    for external_id in ("ext-1", "ext-2", "ext-3"):
        await seed(session_factory, remote, "a.myshopify.com", external_id, status="running", progress=10)

    assert await poller.tick() == 2
    first_round = {detail for kind, detail in remote.calls if kind == "status"}
    assert len(first_round) == 2

    # whichever job was left out finishes before the next round
    (waiting,) = {"ext-1", "ext-2", "ext-3"} - first_round
    remote.set_job(waiting, status="succeeded", progress=100, output_image_url="https://cdn.test/o.png")
    remote.calls.clear()

    assert await poller.tick() == 2
    second_round = {detail for kind, detail in remote.calls if kind == "status"}
    assert waiting in second_round

    async with session_factory() as session:
        job = await JobStore(session).get_job_by_external_id(waiting)
    assert job.status == "completed"
