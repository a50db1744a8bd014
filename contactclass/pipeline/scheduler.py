"""Schedulers that trigger the next orchestrator step.

Each step is an independent task. Nothing waits in-process between steps.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import deque
from datetime import timedelta
from uuid import UUID

from arq.connections import ArqRedis

ORCHESTRATE_FUNCTION = "orchestrate_job"


class JobScheduler(ABC):
    @abstractmethod
    async def enqueue(self, job_id: UUID, defer_seconds: float | None = None) -> None:
        """Schedule one more orchestrator step for ``job_id``."""


class ArqJobScheduler(JobScheduler):
    """Enqueue steps on the arq Redis queue."""

    def __init__(self, redis: ArqRedis, function_name: str = ORCHESTRATE_FUNCTION):
        self.redis = redis
        self.function_name = function_name

    async def enqueue(self, job_id: UUID, defer_seconds: float | None = None) -> None:
        defer_by = timedelta(seconds=defer_seconds) if defer_seconds else None
        await self.redis.enqueue_job(self.function_name, str(job_id), _defer_by=defer_by)


class InMemoryScheduler(JobScheduler):
    """Collect scheduled steps for a local drain loop (CLI and tests)."""

    def __init__(self) -> None:
        self.pending: deque[tuple[UUID, float | None]] = deque()

    async def enqueue(self, job_id: UUID, defer_seconds: float | None = None) -> None:
        self.pending.append((job_id, defer_seconds))

    def pop(self) -> tuple[UUID, float | None] | None:
        return self.pending.popleft() if self.pending else None
