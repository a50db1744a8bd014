"""arq worker running orchestrator steps.

Start with: ``arq contactclass.worker.WorkerSettings``
"""

from typing import Any

import httpx
import structlog

from contactclass.cache import build_cache_store
from contactclass.config import get_config
from contactclass.core.logging import configure_logging
from contactclass.core.queue import get_redis_settings
from contactclass.db.connection import close_db, get_session_factory
from contactclass.pipeline.factory import build_orchestrator
from contactclass.pipeline.scheduler import ArqJobScheduler

logger = structlog.get_logger(__name__)


async def startup(ctx: dict[str, Any]) -> None:
    """Initialize shared resources when the worker starts."""
    config = get_config()
    configure_logging(config.log_level, config.log_format.lower() == "json")

    session_factory = get_session_factory()
    http_client = httpx.AsyncClient()
    cache = build_cache_store(config, session_factory)

    ctx["http_client"] = http_client
    ctx["cache"] = cache
    ctx["orchestrator"] = build_orchestrator(
        config,
        session_factory,
        cache,
        http_client,
        ArqJobScheduler(ctx["redis"]),
    )
    logger.info("worker_started", cache_backend=config.cache.backend)


async def shutdown(ctx: dict[str, Any]) -> None:
    """Cleanup resources when the worker stops."""
    if "http_client" in ctx:
        await ctx["http_client"].aclose()
    if "cache" in ctx:
        await ctx["cache"].close()
    await close_db()
    logger.info("worker_stopped")


async def orchestrate_job(ctx: dict[str, Any], job_id: str) -> dict[str, Any]:
    """Run one orchestrator step for a job and schedule the next one."""
    result = await ctx["orchestrator"].step(job_id)
    return result.as_dict()


class WorkerSettings:
    functions = [orchestrate_job]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = get_redis_settings()
    max_jobs = 10
    job_timeout = 600
