"""
FastAPI dependency injection.

How this works:
- An endpoint declares `orchestrator: JobOrchestrator = Depends(get_orchestrator)`
- FastAPI resolves the chain: DB session, shared httpx client, API clients,
  retry policy, Redis guard → one orchestrator bound to this request's session
- After the endpoint returns (or raises), the session is automatically closed

Long-lived clients (httpx, Redis, the two API clients) are created once in
the app lifespan and stored on app.state; only the session is per request.
Tests swap any link of the chain through app.dependency_overrides.
"""

from typing import AsyncGenerator

import httpx
from fastapi import Depends, Header, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from clients.catalog import CatalogClient
from clients.job_api import JobApiClient
from clients.retry import RetryPolicy
from delivery.guard import DeliveryGuard
from delivery.staged_upload import StagedUploadClient
from delivery.validator import ImageValidator
from jobs.orchestrator import JobOrchestrator
from models.base import AsyncSessionLocal


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yields an async database session, auto-closes when the request ends."""
    async with AsyncSessionLocal() as session:
        yield session


async def get_redis(request: Request) -> Redis:
    """Returns the Redis client stored on the app during startup."""
    return request.app.state.redis


async def get_http(request: Request) -> httpx.AsyncClient:
    return request.app.state.http


async def get_job_api(request: Request) -> JobApiClient:
    return request.app.state.job_api


async def get_catalog(request: Request) -> CatalogClient:
    return request.app.state.catalog


async def get_retry_policy() -> RetryPolicy:
    return RetryPolicy.from_settings()


async def get_shop(x_shop_domain: str = Header(..., min_length=1)) -> str:
    """Tenant scope: every job and batch belongs to exactly one shop."""
    return x_shop_domain


async def get_validator(http: httpx.AsyncClient = Depends(get_http)) -> ImageValidator:
    return ImageValidator(http)


async def get_uploader(
    http: httpx.AsyncClient = Depends(get_http),
    catalog: CatalogClient = Depends(get_catalog),
    validator: ImageValidator = Depends(get_validator),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
) -> StagedUploadClient:
    return StagedUploadClient(http, catalog, validator=validator, retry_policy=retry_policy)


async def get_guard(redis: Redis = Depends(get_redis)) -> DeliveryGuard:
    return DeliveryGuard(redis)


async def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    job_api: JobApiClient = Depends(get_job_api),
    uploader: StagedUploadClient = Depends(get_uploader),
    validator: ImageValidator = Depends(get_validator),
    retry_policy: RetryPolicy = Depends(get_retry_policy),
    guard: DeliveryGuard = Depends(get_guard),
) -> JobOrchestrator:
    return JobOrchestrator(
        db,
        job_api,
        uploader,
        validator,
        retry_policy=retry_policy,
        guard=guard,
    )
