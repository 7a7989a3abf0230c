"""
Batch ORM model — maps to the "batches" table.

A batch groups jobs that share a tool and parameters. The counters are a
cache of an aggregate over the jobs table; JobStore.refresh_batch() is the
only thing that writes them.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, utcnow
from models.enums import BatchStatus
from models.job import JSONPayload


class Batch(Base):
    __tablename__ = "batches"
    __table_args__ = (
        Index("ix_batches_shop_status", "shop", "status"),
        Index("ix_batches_shop_created_at", "shop", "created_at"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    tool_id: Mapped[str] = mapped_column(String(255), nullable=False)
    tool_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    parameters: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONPayload, nullable=True)

    # ── Cached aggregates ───────────────────────────────────────
    total_jobs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    completed_jobs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    failed_jobs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_jobs: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), default=BatchStatus.PENDING.value, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    @property
    def progress(self) -> int:
        """Percent of member jobs that have reached a terminal state."""
        if not self.total_jobs:
            return 0
        finished = self.completed_jobs + self.failed_jobs + self.cancelled_jobs
        return round(finished / self.total_jobs * 100)

    @property
    def success_rate(self) -> Optional[float]:
        """completed / (completed + failed); None until a job has finished either way."""
        finished = self.completed_jobs + self.failed_jobs
        return round(self.completed_jobs / finished, 4) if finished else None

    def __repr__(self) -> str:
        return f"<Batch {self.id} [{self.tool_id}] {self.status} {self.completed_jobs}/{self.total_jobs}>"
