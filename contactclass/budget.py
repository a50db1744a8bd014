"""Per-job budget policy for paid work.

Answers "may I spend?" from a job's persisted counters. Pure and immutable:
it never reads storage and never mutates the job. Callers re-read the job
right before each check and increment counters only after the spend.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from contactclass.config import BudgetConfig


class JobCounters(Protocol):
    total_rows: int
    ai_rows: int
    search_calls_count: int
    ai_tokens_estimate: int


@dataclass(frozen=True)
class BudgetGovernor:
    """Caps on search calls, AI-classified row share and AI tokens."""

    max_search_calls: int = 500
    max_ai_rows_percent: float = 60.0
    max_ai_tokens: int = 1_000_000

    @classmethod
    def from_config(cls, config: BudgetConfig) -> BudgetGovernor:
        return cls(
            max_search_calls=config.max_search_calls_per_job,
            max_ai_rows_percent=config.max_ai_rows_percent,
            max_ai_tokens=config.max_ai_tokens_per_job,
        )

    def remaining_search_calls(self, job: JobCounters) -> int:
        return max(0, self.max_search_calls - (job.search_calls_count or 0))

    def may_search(self, job: JobCounters, calls: int = 1) -> bool:
        """True if ``calls`` more paid lookups fit in the search budget."""
        return calls <= self.remaining_search_calls(job)

    def ai_row_allowance(self, job: JobCounters) -> int:
        """Number of rows the job may classify with AI.

        A row may be sent while the AI share is still below the cap, so the
        allowance is the share rounded up: 1 row of a 1-row job at 60%.
        """
        if not job.total_rows:
            return 0
        return math.ceil(round(job.total_rows * self.max_ai_rows_percent / 100, 9))

    def ai_usage_percent(self, job: JobCounters) -> float:
        if not job.total_rows:
            return 0.0
        return (job.ai_rows or 0) / job.total_rows * 100

    def remaining_ai_rows(self, job: JobCounters) -> int:
        return max(0, self.ai_row_allowance(job) - (job.ai_rows or 0))

    def tokens_exhausted(self, job: JobCounters) -> bool:
        return (job.ai_tokens_estimate or 0) >= self.max_ai_tokens

    def may_classify_with_ai(self, job: JobCounters) -> bool:
        """True while the AI share is below the cap and tokens remain."""
        if not job.total_rows:
            return False
        return (
            self.ai_usage_percent(job) < self.max_ai_rows_percent
            and not self.tokens_exhausted(job)
        )
