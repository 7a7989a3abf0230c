"""
Delivery guard — Redis-backed per-job delivery lock and failure log.

Deliver is check-then-upload-then-mark. Without a lock, two callers that
both see delivered=False would both push the image. The lock is a plain
SET NX EX key per job; the TTL frees it if a process dies mid-upload.

Failed deliveries are appended to a per-shop Redis list so they can be
reviewed (GET /jobs/deliveries/failed), the same way permanently failed
work was kept in a dead-letter list. Each list is trimmed to the newest
DELIVERY_FAILURES_KEPT entries.
"""

import json
import logging
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Optional

from redis.asyncio import Redis

from config.settings import settings
from delivery.types import UploadResult
from jobs.errors import DeliveryInProgress

logger = logging.getLogger(__name__)


class DeliveryGuard:

    LOCK_KEY_PREFIX = "pixeljobs:delivery_lock:"
    FAILURES_KEY_PREFIX = "pixeljobs:delivery_failures:"

    def __init__(
        self,
        redis_client: Redis,
        lock_ttl: Optional[int] = None,
        failures_kept: Optional[int] = None,
    ):
        self._redis = redis_client
        self._lock_ttl = lock_ttl or settings.DELIVERY_LOCK_TTL
        self._failures_kept = failures_kept or settings.DELIVERY_FAILURES_KEPT

    @asynccontextmanager
    async def hold(self, job_id: str) -> AsyncIterator[None]:
        """Hold the delivery lock for job_id, or raise DeliveryInProgress."""
        key = f"{self.LOCK_KEY_PREFIX}{job_id}"
        token = secrets.token_hex(8)
        acquired = await self._redis.set(key, token, nx=True, ex=self._lock_ttl)
        if not acquired:
            raise DeliveryInProgress(f"Job {job_id} is already being delivered")
        try:
            yield
        finally:
            current = await self._redis.get(key)
            if current is not None and (
                current.decode() if isinstance(current, bytes) else current
            ) == token:
                await self._redis.delete(key)

    async def record_failure(
        self, job_id: str, shop: str, destination_id: str, result: UploadResult
    ) -> None:
        entry = json.dumps({
            "job_id": job_id,
            "shop": shop,
            "destination_id": destination_id,
            "error": result.error,
            "step": result.details.get("step"),
            "failed_at": datetime.now(timezone.utc).isoformat(),
        })
        key = f"{self.FAILURES_KEY_PREFIX}{shop}"
        await self._redis.rpush(key, entry)
        await self._redis.ltrim(key, -self._failures_kept, -1)
        logger.warning(f"Delivery of job {job_id} to {destination_id} failed: {result.error}")

    async def failures(self, shop: str) -> list[dict]:
        """Failed deliveries for one shop, oldest first."""
        raw_entries = await self._redis.lrange(f"{self.FAILURES_KEY_PREFIX}{shop}", 0, -1)
        return [json.loads(entry) for entry in raw_entries]
