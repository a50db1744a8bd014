"""SQLAlchemy async database models for contactclass.

Jobs, their rows, the shared response cache and the per-job activity feed.
Timestamps are naive UTC (see ``contactclass.models.utcnow``) so that expiry
and claim comparisons behave the same on PostgreSQL and SQLite.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from contactclass.models import utcnow


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


class JobModel(Base):
    """One bulk classification job."""

    __tablename__ = "jobs"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[str | None] = mapped_column(Text, index=True)
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    file_path: Mapped[str | None] = mapped_column(Text)

    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING", index=True)
    language: Mapped[str] = mapped_column(String(2), nullable=False, default="en")

    # Aggregates (recomputed from row state after each batch)
    total_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_rows: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_usage_percent: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    avg_confidence: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    needs_review_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Budget counters (monotonic, incremented atomically)
    search_calls_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ai_tokens_estimate: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    current_step: Mapped[str | None] = mapped_column(Text)
    current_batch_index: Mapped[int | None] = mapped_column(Integer)
    error_message: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )


class JobRowModel(Base):
    """One contact within a job, with its classification outputs."""

    __tablename__ = "job_rows"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    job_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    row_index: Mapped[int] = mapped_column(Integer, nullable=False)

    raw_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    normalized_json: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    # Classification outputs
    final_category: Mapped[str | None] = mapped_column(String(32), index=True)
    confidence: Mapped[int | None] = mapped_column(Integer)
    reason_en: Mapped[str | None] = mapped_column(Text)
    reason_fr: Mapped[str | None] = mapped_column(Text)
    public_signals_en: Mapped[str | None] = mapped_column(Text)
    public_signals_fr: Mapped[str | None] = mapped_column(Text)
    needs_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    classification_method: Mapped[str | None] = mapped_column(String(16))
    ai_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    model_used: Mapped[str | None] = mapped_column(Text)
    ai_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Enrichment outputs; SQL NULL (not JSON null) so "not enriched yet" is queryable
    enrichment_status: Mapped[str | None] = mapped_column(String(16))
    enrichment_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    enrichment_json: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True))

    row_status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING", index=True)
    last_processing_step: Mapped[str | None] = mapped_column(String(16))
    claimed_at: Mapped[datetime | None] = mapped_column(DateTime)

    # Manual override audit
    manual_override: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    edited_by: Mapped[str | None] = mapped_column(Text)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime)
    previous_value: Mapped[dict[str, Any] | None] = mapped_column(JSON(none_as_null=True))

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("job_id", "row_index", name="uq_job_rows_job_index"),
        Index("idx_job_rows_job_status", "job_id", "row_status"),
    )


class CacheEntryModel(Base):
    """Memoized enrichment payload or AI batch response.

    ``payload`` may hold JSON null: a cached "no data" result.
    """

    __tablename__ = "cache_entries"

    namespace: Mapped[str] = mapped_column(String(32), primary_key=True)
    key: Mapped[str] = mapped_column(Text, primary_key=True)
    payload: Mapped[Any] = mapped_column(JSON, nullable=True)
    model_used: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class ActivityModel(Base):
    """Append-only timeline event for a job."""

    __tablename__ = "activity_feed"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    job_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    message_type: Mapped[str] = mapped_column(String(16), nullable=False, default="INFO")
    # "metadata" is reserved on declarative classes
    metadata_: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSON(none_as_null=True))
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)
