"""
Worker process entry point.

This is a SEPARATE process from the FastAPI API server. It runs the
JobPoller, which bulk-syncs non-terminal jobs against the job API on a
fixed interval so job rows move forward even when no one is watching.

The event loop runs until Ctrl+C (SIGINT) or a kill signal (SIGTERM) sets
the stop event; the poller finishes its current tick and exits.

To run:
    python -m worker.main

In Docker:
    command: python -m worker.main
"""

import asyncio
import logging
import signal

import httpx

from clients.job_api import JobApiClient
from config.settings import settings
from models.base import AsyncSessionLocal, Base, async_engine
from models import batch, job  # noqa: F401  (register tables on Base.metadata)
from worker.poller import JobPoller

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def run() -> None:
    # The worker may start before the API has created the tables
    logger.info("Ensuring database tables exist...")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    stop_event = asyncio.Event()

    # ── Graceful shutdown on Ctrl+C or SIGTERM ──────────────────
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops don't support signal handlers
            signal.signal(sig, lambda signum, frame: stop_event.set())

    async with httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT) as http:
        poller = JobPoller(AsyncSessionLocal, JobApiClient(http))
        logger.info("Worker process running. Press Ctrl+C to stop.")
        await poller.run(stop_event)

    await async_engine.dispose()
    logger.info("Worker process exited")


def main():
    asyncio.run(run())


if __name__ == "__main__":
    main()
