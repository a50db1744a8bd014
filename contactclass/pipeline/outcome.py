"""Result of one stage invocation, applied by the orchestrator."""

from __future__ import annotations

from dataclasses import dataclass

from contactclass.models import JobStatus


@dataclass
class StageOutcome:
    """What a stage did and where the job goes next.

    Attributes:
        processed: Rows handled in this invocation
        next_status: Status to move to, or None to stay and run again
        defer_seconds: Delay before the next step (rows claimed elsewhere)
        budget_exhausted: The stage stopped on a budget cap
        current_step: Progress label for the job record
    """

    processed: int = 0
    next_status: JobStatus | None = None
    defer_seconds: float | None = None
    budget_exhausted: bool = False
    current_step: str | None = None
