"""Wire stages and the orchestrator from configuration."""

from __future__ import annotations

from datetime import timedelta

import httpx
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from contactclass.activity import ActivityLog
from contactclass.ai.openai_provider import AIClassifier, build_ai_provider
from contactclass.ai.stage import AIStage
from contactclass.budget import BudgetGovernor
from contactclass.cache import CacheStore
from contactclass.classification.rules_engine import RulesEngine, get_rules_engine
from contactclass.config import AppConfig
from contactclass.db.repository import JobRepository
from contactclass.enrichment.enricher import ContactEnricher, build_enricher
from contactclass.enrichment.stage import EnrichmentStage
from contactclass.models import JobStatus
from contactclass.pipeline.orchestrator import JobOrchestrator
from contactclass.pipeline.rules_stage import RulesStage
from contactclass.pipeline.scheduler import JobScheduler


def build_orchestrator(
    config: AppConfig,
    session_factory: async_sessionmaker[AsyncSession],
    cache: CacheStore,
    http_client: httpx.AsyncClient,
    scheduler: JobScheduler,
    engine: RulesEngine | None = None,
    enricher: ContactEnricher | None = None,
    classifier: AIClassifier | None = None,
) -> JobOrchestrator:
    """Build a JobOrchestrator with every stage.

    ``engine``, ``enricher`` and ``classifier`` default to the configured
    implementations; tests pass fakes.
    """
    repository = JobRepository(
        session_factory, claim_timeout_seconds=config.queue.claim_timeout_seconds
    )
    activity = ActivityLog(session_factory)
    governor = BudgetGovernor.from_config(config.budget)
    engine = engine or get_rules_engine()
    delay = config.queue.requeue_delay_seconds

    rules = RulesStage(
        repository,
        activity,
        engine,
        config.rules,
        config.enrichment,
        requeue_delay_seconds=delay,
    )
    enrichment = EnrichmentStage(
        repository,
        activity,
        cache,
        enricher or build_enricher(config.enrichment, http_client),
        governor,
        config.enrichment,
        cache_ttl=timedelta(days=config.cache.enrichment_ttl_days),
        requeue_delay_seconds=delay,
    )
    ai = AIStage(
        repository,
        activity,
        cache,
        classifier if classifier is not None else build_ai_provider(config.llm),
        governor,
        engine,
        config.llm,
        cache_ttl=timedelta(days=config.cache.ai_ttl_days),
        requeue_delay_seconds=delay,
    )

    return JobOrchestrator(
        repository,
        activity,
        scheduler,
        handlers={
            JobStatus.RULES: rules.run,
            JobStatus.ENRICHING: enrichment.run,
            JobStatus.AI_CLASSIFYING: ai.run,
        },
    )
