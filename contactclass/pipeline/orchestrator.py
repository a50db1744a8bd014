"""Job state machine.

One ``step`` runs exactly the stage for the job's current status, applies
the resulting transition and schedules the next step. Status only moves
forward (RULES -> ENRICHING -> AI_CLASSIFYING -> COMPLETED); any stage error
fails the job.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any
from uuid import UUID

import structlog

from contactclass.activity import ActivityLog
from contactclass.db.models import JobModel
from contactclass.db.repository import JobRepository
from contactclass.exceptions import InvalidJobIdError, JobNotFoundError
from contactclass.models import JobStatus, Severity
from contactclass.pipeline.outcome import StageOutcome
from contactclass.pipeline.scheduler import JobScheduler

logger = structlog.get_logger(__name__)

StageHandler = Callable[[JobModel], Awaitable[StageOutcome]]


@dataclass
class StepResult:
    """What one orchestrator step did."""

    job_id: str
    status: str | None
    requeued: bool = False
    error: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class JobOrchestrator:
    """Advance a job by one stage invocation per call."""

    def __init__(
        self,
        repository: JobRepository,
        activity: ActivityLog,
        scheduler: JobScheduler,
        handlers: dict[JobStatus, StageHandler],
    ):
        self.repository = repository
        self.activity = activity
        self.scheduler = scheduler
        self.handlers = handlers

    async def step(self, job_id: UUID | str) -> StepResult:
        structlog.contextvars.bind_contextvars(job_id=str(job_id))
        try:
            return await self._step(job_id)
        finally:
            structlog.contextvars.unbind_contextvars("job_id")

    async def _step(self, job_id: UUID | str) -> StepResult:
        try:
            job = await self.repository.get_job(job_id)
        except (InvalidJobIdError, JobNotFoundError) as e:
            logger.error("job_lookup_failed", error=str(e))
            return StepResult(job_id=str(job_id), status=None, error=str(e))

        status = JobStatus(job.status)
        handler = self.handlers.get(status)
        if handler is None:
            # PENDING/PARSING belong to ingestion; terminal jobs stay put
            logger.info("job_step_noop", status=status.value)
            return StepResult(job_id=str(job.id), status=status.value)

        logger.info("job_step_start", status=status.value)
        try:
            outcome = await handler(job)
        except Exception as e:
            logger.exception("job_step_failed", status=status.value)
            message = f"{type(e).__name__}: {e}"
            await self.repository.transition(job.id, JobStatus.FAILED, error_message=message)
            await self.activity.append(
                job.id,
                f"Job failed during {status.value}: {message}",
                Severity.ERROR,
            )
            return StepResult(job_id=str(job.id), status=JobStatus.FAILED.value, error=message)

        new_status = outcome.next_status or status
        if outcome.next_status is not None and outcome.next_status is not status:
            await self.repository.transition(job.id, new_status, current_step=outcome.current_step)
            logger.info("job_transition", from_status=status.value, to_status=new_status.value)
        elif outcome.current_step is not None:
            await self.repository.update_job(job.id, current_step=outcome.current_step)

        if new_status.is_terminal:
            if new_status is JobStatus.COMPLETED:
                await self.repository.refresh_stats(job.id)
                final = await self.repository.get_job(job.id)
                await self.activity.append(
                    job.id,
                    f"Job completed. {final.processed_rows}/{final.total_rows} rows classified, "
                    f"AI usage {final.ai_usage_percent:.1f}%, "
                    f"{final.needs_review_count} rows need review",
                    Severity.SUCCESS,
                    {
                        "processed_rows": final.processed_rows,
                        "ai_rows": final.ai_rows,
                        "search_calls_count": final.search_calls_count,
                        "ai_tokens_estimate": final.ai_tokens_estimate,
                        "budget_exhausted": outcome.budget_exhausted,
                    },
                )
            return StepResult(job_id=str(job.id), status=new_status.value)

        await self.scheduler.enqueue(job.id, outcome.defer_seconds)
        return StepResult(job_id=str(job.id), status=new_status.value, requeued=True)
