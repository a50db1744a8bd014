"""Append-only activity feed for jobs.

Entries are read by the dashboard; the pipeline only writes them. A failed
write is logged and swallowed so the feed can never fail a stage.
"""

from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contactclass.db.models import ActivityModel
from contactclass.models import Severity

logger = structlog.get_logger(__name__)

_LOG_METHOD = {
    Severity.INFO: "info",
    Severity.SUCCESS: "info",
    Severity.WARNING: "warning",
    Severity.ERROR: "error",
}


class ActivityLog:
    """Activity sink backed by the ``activity_feed`` table."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def append(
        self,
        job_id: UUID,
        message: str,
        severity: Severity = Severity.INFO,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        severity = Severity(severity)
        getattr(logger, _LOG_METHOD[severity])(
            message, job_id=str(job_id), severity=severity.value
        )

        try:
            async with self._session_factory() as session:
                session.add(
                    ActivityModel(
                        job_id=job_id,
                        message=message,
                        message_type=severity.value,
                        metadata_=metadata,
                    )
                )
                await session.commit()
        except SQLAlchemyError as e:
            logger.error("activity_write_failed", job_id=str(job_id), error=str(e))
