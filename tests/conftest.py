"""
Shared test fixtures.

These replace real infrastructure with lightweight in-memory alternatives:
- PostgreSQL → SQLite in memory (via aiosqlite)
- Redis → fakeredis (pure Python Redis mock)
- Job API, catalog GraphQL, upload target, image host → one httpx.MockTransport (FakeRemote)
- HTTP server → httpx.AsyncClient with ASGI transport (no network)
- Backoff sleeps → recorded, never awaited for real

This means tests:
- Run without Docker or network access
- Run in milliseconds
- Are fully isolated (each test gets a fresh database and a fresh fake remote)
"""

import io
import json
from typing import Optional, Union

import httpx
import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from PIL import Image
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from api.dependencies import (
    get_catalog,
    get_db,
    get_http,
    get_job_api,
    get_redis,
    get_retry_policy,
)
from api.main import create_app
from clients.catalog import CatalogClient
from clients.job_api import JobApiClient
from clients.retry import RetryPolicy
from delivery.guard import DeliveryGuard
from delivery.staged_upload import StagedUploadClient
from delivery.validator import ImageValidator
from jobs.orchestrator import JobOrchestrator
from models.base import Base
from models import batch, job  # noqa: F401

# SQLite in-memory database, created fresh for each test
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

JOB_API_URL = "https://jobs.test"
CATALOG_URL = "https://shop.test/admin/api/graphql.json"
UPLOAD_URL = "https://uploads.test/bucket"
IMAGE_HOST = "https://images.test"
SHOP = "demo-shop.myshopify.com"


def image_bytes(fmt: str = "PNG") -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 30, 30)).save(buffer, format=fmt)
    return buffer.getvalue()


class FakeRemote:
    """
    Stand-in for every remote service, routed by host.

    Every request is appended to `calls` as (kind, detail), so tests can
    assert on ordering ("attach happened before detach") and on absence
    ("no network call was made").
    """

    def __init__(self):
        self.calls: list[tuple[str, str]] = []

        # image host: url → (content type, bytes, declared size)
        self.images: dict[str, tuple[Optional[str], bytes, Optional[int]]] = {}
        self.download_statuses: list[int] = []

        # job API
        self.jobs: dict[str, dict] = {}
        self.dispatched: list[dict] = []
        self.dispatch_status = 200
        self.forced_ids: list[str] = []
        self.unavailable_jobs: set[str] = set()
        self._next_job = 0

        # catalog: operation → queued overrides (a status code, a JSON body, or raw text)
        self.graphql_overrides: dict[str, list[Union[int, dict, str]]] = {}
        self.graphql_requests: list[dict] = []
        self._next_media = 0

        # upload target
        self.transfer_statuses: list[int] = []
        self.transfers: list[bytes] = []

    # ── Setup helpers ───────────────────────────────────────────

    def add_image(
        self,
        path: str,
        content: bytes,
        content_type: Optional[str] = "image/png",
        declared_size: Optional[int] = None,
    ) -> str:
        url = f"{IMAGE_HOST}/{path}"
        self.images[url] = (content_type, content, declared_size)
        return url

    def set_job(self, external_id: str, **fields) -> None:
        self.jobs.setdefault(external_id, {"id": external_id}).update(fields)

    def kinds(self) -> list[str]:
        return [kind for kind, _ in self.calls]

    def operations(self) -> list[str]:
        return [detail for kind, detail in self.calls if kind == "graphql"]

    # ── Transport ───────────────────────────────────────────────

    def handler(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host == "images.test":
            return self._image(request)
        if host == "jobs.test":
            return self._job_api(request)
        if host == "shop.test":
            return self._graphql(request)
        if host == "uploads.test":
            return self._transfer(request)
        raise AssertionError(f"unexpected request to {request.url}")

    def _image(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        kind = "head" if request.method == "HEAD" else "download"
        self.calls.append((kind, url))
        if url not in self.images:
            return httpx.Response(404)
        content_type, content, declared_size = self.images[url]

        headers = {}
        if content_type:
            headers["content-type"] = content_type
        if kind == "head":
            headers["content-length"] = str(declared_size or len(content))
            return httpx.Response(200, headers=headers)

        if self.download_statuses:
            status = self.download_statuses.pop(0)
            if status >= 400:
                return httpx.Response(status)
        return httpx.Response(200, headers=headers, content=content)

    def _job_api(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.method == "POST" and path == "/api/jobs/dispatch":
            body = json.loads(request.content)
            self.calls.append(("dispatch", body["input_image_url"]))
            self.dispatched.append(body)
            if self.dispatch_status != 200:
                return httpx.Response(
                    self.dispatch_status,
                    json={"success": False, "message": "Insufficient credits"},
                )
            if self.forced_ids:
                external_id = self.forced_ids.pop(0)
            else:
                self._next_job += 1
                external_id = f"ext-{self._next_job}"
            self.jobs[external_id] = {"id": external_id, "status": "queued", "progress": 0}
            return httpx.Response(
                200, json={"success": True, "data": {"id": external_id, "status": "queued"}}
            )

        external_id = path.rsplit("/", 1)[-1]
        self.calls.append(("status", external_id))
        if external_id in self.unavailable_jobs:
            return httpx.Response(503)
        if external_id not in self.jobs:
            return httpx.Response(404, json={"success": False, "message": "Job not found"})
        return httpx.Response(200, json={"success": True, "data": self.jobs[external_id]})

    def _graphql(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        operation = body["query"].split("(")[0].split()[-1]
        self.calls.append(("graphql", operation))
        self.graphql_requests.append({
            "operation": operation,
            "variables": body["variables"],
            "headers": dict(request.headers),
        })

        queued = self.graphql_overrides.get(operation)
        if queued:
            override = queued.pop(0)
            if isinstance(override, int):
                return httpx.Response(override)
            if isinstance(override, str):
                return httpx.Response(200, text=override, headers={"content-type": "text/html"})
            return httpx.Response(200, json=override)
        return httpx.Response(
            200, json={"data": {operation: self._default_result(operation, body["variables"])}}
        )

    def _default_result(self, operation: str, variables: dict) -> dict:
        if operation == "stagedUploadsCreate":
            filename = variables["input"][0]["filename"]
            return {
                "stagedTargets": [{
                    "url": UPLOAD_URL,
                    "resourceUrl": f"{UPLOAD_URL}/tmp/{filename}",
                    "parameters": [
                        {"name": "key", "value": f"tmp/{filename}"},
                        {"name": "policy", "value": "signed-policy"},
                    ],
                }],
                "userErrors": [],
            }
        if operation == "productCreateMedia":
            self._next_media += 1
            return {
                "media": [{
                    "id": f"gid://shopify/MediaImage/{self._next_media}",
                    "alt": variables["media"][0]["alt"],
                    "image": {"url": f"https://cdn.test/media/{self._next_media}.png"},
                }],
                "mediaUserErrors": [],
            }
        if operation == "productDeleteMedia":
            return {"deletedMediaIds": variables["mediaIds"], "mediaUserErrors": []}
        if operation == "productReorderMedia":
            return {"job": {"id": "gid://shopify/Job/1"}, "userErrors": []}
        raise AssertionError(f"unexpected GraphQL operation {operation}")

    def _transfer(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(("transfer", str(request.url)))
        self.transfers.append(request.content)
        status = self.transfer_statuses.pop(0) if self.transfer_statuses else 204
        return httpx.Response(status)


# ── Infrastructure ──────────────────────────────────────────────


@pytest_asyncio.fixture
async def async_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine):
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_factory):
    """Create a database session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis():
    """Create a fake Redis instance (in-memory, no real Redis needed)."""
    r = FakeRedis()
    yield r
    await r.flushall()


# ── Remote services ─────────────────────────────────────────────


@pytest.fixture
def remote():
    return FakeRemote()


@pytest_asyncio.fixture
async def http(remote):
    async with httpx.AsyncClient(transport=httpx.MockTransport(remote.handler)) as c:
        yield c


@pytest.fixture
def sleeps():
    """Every backoff delay the retry policy asked for, in order."""
    return []


@pytest.fixture
def retry_policy(sleeps):
    async def record(delay: float) -> None:
        sleeps.append(delay)

    return RetryPolicy(max_attempts=3, base_delay=1.0, factor=2.0, sleep=record)


@pytest.fixture
def job_api(http):
    return JobApiClient(http, base_url=JOB_API_URL, api_key="test-key")


@pytest.fixture
def catalog(http):
    return CatalogClient(http, graphql_url=CATALOG_URL, access_token="shpat_test")


@pytest.fixture
def validator(http):
    return ImageValidator(http)


@pytest.fixture
def uploader(http, catalog, validator, retry_policy):
    return StagedUploadClient(http, catalog, validator=validator, retry_policy=retry_policy)


@pytest.fixture
def guard(fake_redis):
    return DeliveryGuard(fake_redis, lock_ttl=30)


@pytest.fixture
def orchestrator(async_session, job_api, uploader, validator, retry_policy, guard):
    return JobOrchestrator(
        async_session, job_api, uploader, validator, retry_policy=retry_policy, guard=guard
    )


@pytest.fixture
def shop():
    return SHOP


@pytest.fixture
def make_image():
    return image_bytes


@pytest.fixture
def png_bytes():
    return image_bytes("PNG")


@pytest.fixture
def source_image(remote, png_bytes):
    """URL of a valid PNG on the fake image host."""
    return remote.add_image("shirt.png", png_bytes)


# ── API client ──────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(async_session, fake_redis, http, job_api, catalog, retry_policy):
    """
    Create a test HTTP client that talks directly to the FastAPI app.

    dependency_overrides swaps the real session, Redis and outbound clients
    for the test ones. ASGITransport means requests go directly to the app
    in-process, no HTTP server or network involved.
    """
    app = create_app()

    async def override_get_db():
        yield async_session

    async def override_get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_http] = lambda: http
    app.dependency_overrides[get_job_api] = lambda: job_api
    app.dependency_overrides[get_catalog] = lambda: catalog
    app.dependency_overrides[get_retry_policy] = lambda: retry_policy

    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport,
        base_url="http://test",
        headers={"X-Shop-Domain": SHOP},
    ) as c:
        yield c
