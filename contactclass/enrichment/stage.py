"""Enrichment stage: cached web lookups for rows rules could not settle."""

from __future__ import annotations

from datetime import timedelta

import structlog

from contactclass.activity import ActivityLog
from contactclass.budget import BudgetGovernor
from contactclass.cache import CacheNamespace, CacheStore
from contactclass.canonical.keys import enrichment_cache_key
from contactclass.config import EnrichmentConfig
from contactclass.db.models import JobModel
from contactclass.db.repository import JobRepository, RowQuery
from contactclass.enrichment.enricher import ContactEnricher
from contactclass.models import (
    Contact,
    EnrichmentPayload,
    EnrichmentStatus,
    JobStatus,
    ProcessingStep,
    Severity,
)
from contactclass.pipeline.outcome import StageOutcome

logger = structlog.get_logger(__name__)


class EnrichmentStage:
    """Enrich one batch of eligible rows per invocation.

    Per row: cache check, then (on miss) budget check against the latest job
    counters, lookups, cache write of the payload or None, and an atomic
    increment of ``search_calls_count`` by the paid calls actually made.
    """

    def __init__(
        self,
        repository: JobRepository,
        activity: ActivityLog,
        cache: CacheStore,
        enricher: ContactEnricher,
        governor: BudgetGovernor,
        config: EnrichmentConfig,
        cache_ttl: timedelta = timedelta(days=30),
        requeue_delay_seconds: float = 5.0,
    ):
        self.repository = repository
        self.activity = activity
        self.cache = cache
        self.enricher = enricher
        self.governor = governor
        self.config = config
        self.cache_ttl = cache_ttl
        self.requeue_delay_seconds = requeue_delay_seconds

    def _query(self, limit: int | None) -> RowQuery:
        return RowQuery.for_enrichment(
            confidence_floor=self.config.confidence_floor,
            max_attempts=self.config.max_attempts,
            limit=limit,
        )

    async def _mark_no_data(self, row_id) -> None:
        await self.repository.update_row(
            row_id,
            {
                "enrichment_status": EnrichmentStatus.FAILED.value,
                "last_processing_step": ProcessingStep.ENRICH.value,
            },
            increments={"enrichment_attempts": 1},
        )

    async def run(self, job: JobModel) -> StageOutcome:
        if not self.enricher.has_providers:
            await self.activity.append(
                job.id,
                "No enrichment provider configured. Skipping enrichment.",
                Severity.WARNING,
            )
            return StageOutcome(
                next_status=JobStatus.AI_CLASSIFYING,
                current_step="Ready for AI classification",
            )

        rows = await self.repository.claim_rows(job.id, self._query(self.config.batch_size))
        if not rows:
            if await self.repository.count_rows(job.id, self._query(None)):
                # Everything left is claimed by an overlapping invocation
                return StageOutcome(defer_seconds=self.requeue_delay_seconds)
            await self.activity.append(job.id, "No rows need enrichment", Severity.INFO)
            return StageOutcome(
                next_status=JobStatus.AI_CLASSIFYING,
                current_step="Ready for AI classification",
            )

        depth = self.config.depth
        await self.activity.append(
            job.id, f"Enriching {len(rows)} contacts (depth {depth})", Severity.INFO
        )

        enriched = failed = cache_hits = search_calls = 0

        for position, row in enumerate(rows):
            contact = Contact.model_validate(row.normalized_json)
            cache_key = enrichment_cache_key(contact)

            cached = await self.cache.get(CacheNamespace.ENRICHMENT, cache_key)
            if cached is not None:
                cache_hits += 1
                payload = (
                    EnrichmentPayload.model_validate(cached.payload)
                    if cached.payload is not None
                    else None
                )
            else:
                needed = self.enricher.paid_calls_for(contact, depth)
                if needed:
                    latest = await self.repository.get_job(job.id)
                    if not self.governor.may_search(latest, needed):
                        await self.repository.release_claims([r.id for r in rows[position:]])
                        await self.activity.append(
                            job.id,
                            f"Search budget cap reached ({self.governor.max_search_calls} calls). "
                            f"Enriched {enriched} rows; {len(rows) - position} left pending.",
                            Severity.WARNING,
                            {"search_calls_count": latest.search_calls_count},
                        )
                        await self.repository.refresh_stats(job.id)
                        return StageOutcome(
                            processed=position,
                            next_status=JobStatus.AI_CLASSIFYING,
                            budget_exhausted=True,
                            current_step="Search budget exhausted",
                        )

                try:
                    lookup = await self.enricher.enrich(contact, depth)
                except Exception as e:
                    # Paid lookups run before the site fetch and count as made
                    if needed:
                        search_calls += needed
                        await self.repository.increment_job_counters(
                            job.id, search_calls_count=needed
                        )
                    logger.warning(
                        "enrichment_row_failed",
                        row_id=str(row.id),
                        error=f"{type(e).__name__}: {e}",
                    )
                    await self.activity.append(
                        job.id,
                        f"Enrichment failed for row {row.row_index}: {type(e).__name__}: {e}",
                        Severity.ERROR,
                    )
                    await self._mark_no_data(row.id)
                    failed += 1
                    continue

                if lookup.paid_calls:
                    search_calls += lookup.paid_calls
                    await self.repository.increment_job_counters(
                        job.id, search_calls_count=lookup.paid_calls
                    )

                payload = lookup.payload
                await self.cache.put(
                    CacheNamespace.ENRICHMENT,
                    cache_key,
                    payload.model_dump() if payload is not None else None,
                    self.cache_ttl,
                )

            if payload is not None:
                await self.repository.update_row(
                    row.id,
                    {
                        "enrichment_json": payload.model_dump(),
                        "enrichment_status": EnrichmentStatus.DONE.value,
                        "last_processing_step": ProcessingStep.ENRICH.value,
                    },
                    increments={"enrichment_attempts": 1},
                )
                enriched += 1
            else:
                await self._mark_no_data(row.id)
                failed += 1

        await self.repository.refresh_stats(job.id)
        await self.activity.append(
            job.id,
            f"Enrichment batch completed. Enriched: {enriched}, No data: {failed}, "
            f"Cache hits: {cache_hits}, Search calls: {search_calls}",
            Severity.SUCCESS,
            {
                "enriched": enriched,
                "failed": failed,
                "cache_hits": cache_hits,
                "search_calls": search_calls,
            },
        )
        logger.info(
            "enrichment_batch_done",
            rows=len(rows),
            enriched=enriched,
            cache_hits=cache_hits,
            search_calls=search_calls,
        )

        if await self.repository.count_rows(job.id, self._query(None)):
            return StageOutcome(processed=len(rows), current_step="Enriching contacts")

        return StageOutcome(
            processed=len(rows),
            next_status=JobStatus.AI_CLASSIFYING,
            current_step="Ready for AI classification",
        )
