"""
FastAPI application factory.

This file:
1. Creates the FastAPI app
2. Runs startup logic (create DB tables, open the shared HTTP client, connect to Redis)
3. Registers all routers (health, jobs, batches, uploads)
4. Maps domain and remote errors to HTTP responses
5. Runs shutdown logic (close connections)

Error mapping:
    JobError     → its own status_code (404 / 409 / 422 / 502), body {"detail", "details"}
    ClientError  → 502; the job API or catalog failed and retries didn't help

To run:  uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
   or:  python -m api.main
"""

import logging
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.asyncio import Redis as AsyncRedis

from config.settings import settings
from models.base import async_engine, Base
from models import batch, job  # noqa: F401  (register tables on Base.metadata)
from clients.catalog import CatalogClient
from clients.errors import ClientError
from clients.job_api import JobApiClient
from jobs.errors import JobError
from api.routers import batches, health, jobs, uploads

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Runs on startup (before yield) and shutdown (after yield).

    Startup:
    - Creates all DB tables if they don't exist (safe to run multiple times)
    - Opens one pooled httpx.AsyncClient shared by every outbound call
    - Connects to Redis (delivery locks + failure log)

    Shutdown:
    - Closes the HTTP client and Redis connection
    - Disposes the DB engine (closes connection pool)
    """
    # ── Startup ─────────────────────────────────────────────────
    logger.info("Creating database tables...")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.http = httpx.AsyncClient(timeout=settings.HTTP_TIMEOUT)
    app.state.job_api = JobApiClient(app.state.http)
    app.state.catalog = CatalogClient(app.state.http)
    app.state.redis = AsyncRedis.from_url(settings.redis_url)
    logger.info(f"API ready — job API at {settings.JOB_API_URL}")

    yield

    # ── Shutdown ────────────────────────────────────────────────
    await app.state.http.aclose()
    await app.state.redis.close()
    await async_engine.dispose()
    logger.info("API shut down")


async def handle_job_error(request: Request, exc: JobError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "details": exc.details},
    )


async def handle_client_error(request: Request, exc: ClientError) -> JSONResponse:
    logger.warning(f"{request.method} {request.url.path} failed upstream: {exc}")
    return JSONResponse(
        status_code=502,
        content={"detail": exc.message, "upstream_status": exc.status_code},
    )


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    app = FastAPI(
        title="Pixel Jobs",
        description="Dispatches image jobs to an external AI job API, tracks them, "
                    "and delivers finished images into a product catalog",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(JobError, handle_job_error)
    app.add_exception_handler(ClientError, handle_client_error)

    app.include_router(health.router)
    app.include_router(jobs.router)
    app.include_router(batches.router)
    app.include_router(uploads.router)

    return app


# This is what uvicorn imports: `uvicorn api.main:app`
app = create_app()


if __name__ == "__main__":
    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
