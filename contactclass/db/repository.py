"""Job and row persistence for the pipeline stages.

Every method runs in its own short transaction so that overlapping stage
invocations always act on the latest persisted state. Counters are
incremented in SQL (``SET x = x + n``), never from a value read earlier.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Mapping, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contactclass.canonical.normalize import normalize_contact
from contactclass.db.models import JobModel, JobRowModel
from contactclass.exceptions import InvalidJobIdError, InvalidTransitionError, JobNotFoundError
from contactclass.models import (
    Category,
    ClassificationMethod,
    JobStatus,
    Language,
    ProcessingStep,
    RowStatus,
    utcnow,
)

_ROW_COUNTERS = {"ai_attempts", "enrichment_attempts"}
_JOB_COUNTERS = {"search_calls_count", "ai_tokens_estimate"}


def _bulk_update(model):
    # Plain UPDATE; sessions here never hold the affected objects
    return update(model).execution_options(synchronize_session=False)


def parse_job_id(value: UUID | str) -> UUID:
    """Validate a job identifier.

    Raises:
        InvalidJobIdError: If ``value`` is not a UUID
    """
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (ValueError, TypeError, AttributeError):
        raise InvalidJobIdError(f"Malformed job id: {value!r}") from None


@dataclass
class RowQuery:
    """Bounded row predicate, combined with AND.

    Attributes:
        statuses: Allowed row_status values (empty = any)
        steps: Allowed last_processing_step values; None matches NULL
        not_enriched: enrichment_json IS NULL
        enrichment_floor: row is PENDING, or COMPLETED with confidence below floor
        max_enrichment_attempts: enrichment_attempts below this
        ai_threshold: ai_used is false and category or confidence below threshold
        max_ai_attempts: ai_attempts below this
        category_is_null: final_category IS NULL
        include_manual: include manually overridden rows
        limit: maximum rows returned (None = unbounded)
    """

    statuses: tuple[RowStatus, ...] = ()
    steps: tuple[ProcessingStep | None, ...] = ()
    not_enriched: bool = False
    enrichment_floor: int | None = None
    max_enrichment_attempts: int | None = None
    ai_threshold: int | None = None
    max_ai_attempts: int | None = None
    category_is_null: bool = False
    include_manual: bool = False
    limit: int | None = 100

    @classmethod
    def for_rules(cls, limit: int | None) -> RowQuery:
        """Pending rows the rules stage has not seen yet."""
        return cls(
            statuses=(RowStatus.PENDING,),
            steps=(ProcessingStep.PARSE, None),
            limit=limit,
        )

    @classmethod
    def for_enrichment(
        cls, confidence_floor: int, max_attempts: int, limit: int | None
    ) -> RowQuery:
        return cls(
            not_enriched=True,
            enrichment_floor=confidence_floor,
            max_enrichment_attempts=max_attempts,
            limit=limit,
        )

    @classmethod
    def for_ai(cls, accept_threshold: int, max_attempts: int, limit: int | None) -> RowQuery:
        return cls(
            ai_threshold=accept_threshold,
            max_ai_attempts=max_attempts,
            limit=limit,
        )

    @classmethod
    def unclassified(cls) -> RowQuery:
        """Rows still without any category."""
        return cls(category_is_null=True, limit=None)

    @classmethod
    def open_rows(cls) -> RowQuery:
        """Rows still PENDING after the rules stage."""
        return cls(statuses=(RowStatus.PENDING,), limit=None)

    def conditions(self) -> list[Any]:
        m = JobRowModel
        conds: list[Any] = []

        if not self.include_manual:
            conds.append(m.manual_override.is_(False))

        if self.statuses:
            conds.append(m.row_status.in_([s.value for s in self.statuses]))

        if self.steps:
            values = [s.value for s in self.steps if s is not None]
            clause = m.last_processing_step.in_(values)
            if None in self.steps:
                clause = or_(clause, m.last_processing_step.is_(None))
            conds.append(clause)

        if self.not_enriched:
            conds.append(m.enrichment_json.is_(None))

        if self.enrichment_floor is not None:
            conds.append(
                or_(
                    m.row_status == RowStatus.PENDING.value,
                    and_(
                        m.row_status == RowStatus.COMPLETED.value,
                        m.confidence < self.enrichment_floor,
                    ),
                )
            )

        if self.max_enrichment_attempts is not None:
            conds.append(m.enrichment_attempts < self.max_enrichment_attempts)

        if self.ai_threshold is not None:
            conds.append(m.ai_used.is_(False))
            conds.append(
                or_(
                    m.final_category.is_(None),
                    m.confidence.is_(None),
                    m.confidence < self.ai_threshold,
                )
            )

        if self.max_ai_attempts is not None:
            conds.append(m.ai_attempts < self.max_ai_attempts)

        if self.category_is_null:
            conds.append(m.final_category.is_(None))

        return conds


class JobRepository:
    """Async SQLAlchemy access to jobs and job rows."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        claim_timeout_seconds: int = 600,
    ):
        self._session_factory = session_factory
        self.claim_timeout = timedelta(seconds=claim_timeout_seconds)

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    def _claim_free(self, now):
        stale = now - self.claim_timeout
        return or_(JobRowModel.claimed_at.is_(None), JobRowModel.claimed_at < stale)

    # ------------------------------------------------------------------ jobs

    async def get_job(self, job_id: UUID | str) -> JobModel:
        """Load the latest persisted job state.

        Raises:
            InvalidJobIdError: If the id is malformed
            JobNotFoundError: If no job exists
        """
        job_uuid = parse_job_id(job_id)
        async with self._session() as session:
            job = await session.get(JobModel, job_uuid)
        if job is None:
            raise JobNotFoundError(f"Job not found: {job_uuid}")
        return job

    async def create_job(
        self,
        filename: str,
        records: Sequence[Mapping[str, Any]],
        language: Language = Language.EN,
        user_id: str | None = None,
        file_path: str | None = None,
    ) -> JobModel:
        """Create a job and its rows from raw tabular records.

        The job is created in PARSING and moved to RULES once every row is
        stored, mirroring the hand-off from the ingestion stage.
        """
        job = JobModel(
            filename=filename,
            file_path=file_path,
            user_id=user_id,
            language=Language(language).value,
            status=JobStatus.PARSING.value,
            total_rows=len(records),
            current_step="Parsing",
        )

        async with self._session() as session:
            session.add(job)
            await session.flush()
            for index, record in enumerate(records):
                contact = normalize_contact(record)
                session.add(
                    JobRowModel(
                        job_id=job.id,
                        row_index=index,
                        raw_json={str(k): ("" if v is None else str(v)) for k, v in record.items()},
                        normalized_json=contact.model_dump(),
                        row_status=RowStatus.PENDING.value,
                        last_processing_step=ProcessingStep.PARSE.value,
                    )
                )
            job.status = JobStatus.RULES.value
            job.current_step = "Ready for rules classification"

        return job

    async def update_job(self, job_id: UUID, **values: Any) -> None:
        async with self._session() as session:
            await session.execute(
                _bulk_update(JobModel).where(JobModel.id == job_id).values(updated_at=utcnow(), **values)
            )

    async def increment_job_counters(self, job_id: UUID, **amounts: int) -> None:
        """Atomically add to budget counters (``SET x = x + n``)."""
        unknown = set(amounts) - _JOB_COUNTERS
        if unknown:
            raise ValueError(f"Not a job counter: {sorted(unknown)}")

        values = {
            name: getattr(JobModel, name) + int(amount)
            for name, amount in amounts.items()
            if amount
        }
        if not values:
            return
        await self.update_job(job_id, **values)

    async def transition(
        self,
        job_id: UUID,
        new_status: JobStatus,
        current_step: str | None = None,
        error_message: str | None = None,
    ) -> None:
        """Move a job forward in the pipeline (or to FAILED).

        Raises:
            InvalidTransitionError: If the move is backward or leaves a
                terminal state
        """
        new_status = JobStatus(new_status)
        if new_status is JobStatus.FAILED:
            allowed = [s for s in JobStatus if not s.is_terminal]
        else:
            allowed = [s for s in JobStatus if not s.is_terminal and s.order <= new_status.order]

        values: dict[str, Any] = {"status": new_status.value, "updated_at": utcnow()}
        if current_step is not None:
            values["current_step"] = current_step
        if error_message is not None:
            values["error_message"] = error_message

        async with self._session() as session:
            result = await session.execute(
                _bulk_update(JobModel)
                .where(JobModel.id == job_id, JobModel.status.in_([s.value for s in allowed]))
                .values(**values)
            )
            if result.rowcount == 1:
                return
            current = await session.scalar(select(JobModel.status).where(JobModel.id == job_id))

        if current is None:
            raise JobNotFoundError(f"Job not found: {job_id}")
        if current == new_status.value:
            # An overlapping invocation already made this move
            return
        raise InvalidTransitionError(f"Cannot move job {job_id} from {current} to {new_status.value}")

    async def refresh_stats(self, job_id: UUID) -> None:
        """Recompute job aggregates from row state."""
        m = JobRowModel
        query = select(
            func.count(m.id),
            func.sum(case((m.row_status == RowStatus.COMPLETED.value, 1), else_=0)),
            func.sum(case((m.ai_used.is_(True), 1), else_=0)),
            func.avg(m.confidence),
            func.sum(case((m.needs_review.is_(True), 1), else_=0)),
        ).where(m.job_id == job_id)

        async with self._session() as session:
            row_count, completed, ai_rows, avg_confidence, needs_review = (
                await session.execute(query)
            ).one()
            total_rows = await session.scalar(select(JobModel.total_rows).where(JobModel.id == job_id))

            row_count = row_count or 0
            ai_rows = int(ai_rows or 0)
            await session.execute(
                _bulk_update(JobModel)
                .where(JobModel.id == job_id)
                .values(
                    processed_rows=min(int(completed or 0), total_rows or 0),
                    ai_rows=ai_rows,
                    ai_usage_percent=round(ai_rows / row_count * 100, 2) if row_count else 0.0,
                    avg_confidence=round(float(avg_confidence), 2) if avg_confidence is not None else 0.0,
                    needs_review_count=int(needs_review or 0),
                    updated_at=utcnow(),
                )
            )

    # ------------------------------------------------------------------ rows

    async def count_rows(self, job_id: UUID, query: RowQuery, unclaimed_only: bool = False) -> int:
        conds = [JobRowModel.job_id == job_id, *query.conditions()]
        if unclaimed_only:
            conds.append(self._claim_free(utcnow()))
        async with self._session() as session:
            return await session.scalar(select(func.count(JobRowModel.id)).where(*conds)) or 0

    async def fetch_rows(self, job_id: UUID, query: RowQuery) -> list[JobRowModel]:
        """Read rows matching ``query`` without claiming them."""
        stmt = (
            select(JobRowModel)
            .where(JobRowModel.job_id == job_id, *query.conditions())
            .order_by(JobRowModel.row_index)
        )
        if query.limit is not None:
            stmt = stmt.limit(query.limit)
        async with self._session() as session:
            return list((await session.execute(stmt)).scalars())

    async def claim_rows(self, job_id: UUID, query: RowQuery) -> list[JobRowModel]:
        """Claim up to ``query.limit`` eligible rows for this invocation.

        A row is claimable when it has no claim or its claim is older than
        the claim timeout. Each claim is a conditional UPDATE, so a row
        taken by an overlapping invocation in between is skipped.
        """
        now = utcnow()
        candidates = (
            select(JobRowModel.id)
            .where(JobRowModel.job_id == job_id, self._claim_free(now), *query.conditions())
            .order_by(JobRowModel.row_index)
        )
        if query.limit is not None:
            candidates = candidates.limit(query.limit)

        async with self._session() as session:
            ids = list((await session.execute(candidates)).scalars())
            claimed: list[UUID] = []
            for row_id in ids:
                result = await session.execute(
                    _bulk_update(JobRowModel)
                    .where(JobRowModel.id == row_id, self._claim_free(now))
                    .values(claimed_at=now)
                )
                if result.rowcount == 1:
                    claimed.append(row_id)

            if not claimed:
                return []

            rows = (
                await session.execute(
                    select(JobRowModel)
                    .where(JobRowModel.id.in_(claimed))
                    .order_by(JobRowModel.row_index)
                )
            ).scalars()
            return list(rows)

    async def release_claims(self, row_ids: Sequence[UUID]) -> None:
        if not row_ids:
            return
        async with self._session() as session:
            await session.execute(
                _bulk_update(JobRowModel).where(JobRowModel.id.in_(list(row_ids))).values(claimed_at=None)
            )

    async def update_row(
        self,
        row_id: UUID,
        values: Mapping[str, Any] | None = None,
        increments: Mapping[str, int] | None = None,
    ) -> bool:
        """Write a stage result to a row and release its claim.

        Manually overridden rows are never written.

        Returns:
            True if the row was updated
        """
        data: dict[str, Any] = dict(values or {})
        for name, amount in (increments or {}).items():
            if name not in _ROW_COUNTERS:
                raise ValueError(f"Not a row counter: {name}")
            data[name] = getattr(JobRowModel, name) + int(amount)
        data["claimed_at"] = None
        data["updated_at"] = utcnow()

        async with self._session() as session:
            result = await session.execute(
                _bulk_update(JobRowModel)
                .where(JobRowModel.id == row_id, JobRowModel.manual_override.is_(False))
                .values(**data)
            )
        return result.rowcount == 1

    async def mark_needs_review(self, job_id: UUID, query: RowQuery) -> int:
        """Flag every matching row for review.

        Returns:
            Number of rows flagged
        """
        async with self._session() as session:
            result = await session.execute(
                _bulk_update(JobRowModel)
                .where(JobRowModel.job_id == job_id, *query.conditions())
                .values(needs_review=True, updated_at=utcnow())
            )
        return result.rowcount or 0

    async def apply_manual_override(
        self,
        row_id: UUID,
        category: Category,
        edited_by: str,
        reason: str | None = None,
        language: Language = Language.EN,
    ) -> JobRowModel:
        """Record a human decision; automated stages never touch the row again.

        The replaced values are kept in ``previous_value``. An existing
        classification method is kept; a row never classified gets MANUAL.
        """
        category = Category(category)
        language = Language(language)

        async with self._session() as session:
            row = await session.get(JobRowModel, row_id)
            if row is None:
                raise LookupError(f"Row not found: {row_id}")

            row.previous_value = {
                "final_category": row.final_category,
                "confidence": row.confidence,
                "classification_method": row.classification_method,
                "needs_review": row.needs_review,
                "row_status": row.row_status,
            }
            row.final_category = category.value
            row.confidence = 100
            row.needs_review = False
            row.row_status = RowStatus.COMPLETED.value
            if row.classification_method is None:
                row.classification_method = ClassificationMethod.MANUAL.value
            row.manual_override = True
            row.edited_by = edited_by
            row.edited_at = utcnow()
            row.claimed_at = None
            if reason is not None:
                setattr(row, language.reason_field, reason)

        return row
