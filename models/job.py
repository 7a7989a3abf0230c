"""
Job ORM model — maps to the "jobs" table.

One row per unit of work dispatched to the external AI job API.

- external_job_id is the id the job API handed back; it is unique across
  every job ever stored and is the idempotency key for dispatch
- parameters/metadata are opaque key/value payloads passed through to the
  job API untouched
- delivery columns track whether the output was pushed to the catalog
- version_id is bumped on every write; an UPDATE planned against a stale
  copy of the row matches nothing and raises StaleDataError
- all timestamps are UTC and generated in Python (see models.base.utcnow)
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base, utcnow
from models.enums import JobPriority, JobStatus

# Generic JSON everywhere, JSONB on Postgres
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_shop_status", "shop", "status"),
        Index("ix_jobs_shop_created_at", "shop", "created_at"),
    )

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    shop: Mapped[str] = mapped_column(String(255), nullable=False)
    external_job_id: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True
    )
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("batches.id"), nullable=True, index=True
    )

    # ── Descriptive ─────────────────────────────────────────────
    tool_id: Mapped[str] = mapped_column(String(255), nullable=False)
    tool_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    input_url: Mapped[str] = mapped_column(Text, nullable=False)
    output_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    parameters: Mapped[Optional[dict[str, Any]]] = mapped_column(JSONPayload, nullable=True)
    # "metadata" is reserved on declarative classes
    job_metadata: Mapped[Optional[dict[str, Any]]] = mapped_column(
        "metadata", JSONPayload, nullable=True
    )

    # ── Processing state ────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20), default=JobStatus.PENDING.value, nullable=False
    )
    priority: Mapped[str] = mapped_column(
        String(20), default=JobPriority.NORMAL.value, nullable=False
    )
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    credits_used: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Destination / delivery ──────────────────────────────────
    destination_id: Mapped[Optional[str]] = mapped_column(
        String(255), nullable=True, index=True
    )
    destination_title: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    variant_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    source_media_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    delivered: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_media_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # ── Lifecycle timestamps ────────────────────────────────────
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

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)

    @property
    def is_terminal(self) -> bool:
        return self.job_status.is_terminal

    def __repr__(self) -> str:
        return f"<Job {self.id} [{self.tool_id}] {self.status}>"
