"""AI classification stage.

Classifies low-confidence and unclassified rows in batches under the job's
AI budget, with response caching, escalation of a small low-confidence
minority to the secondary model and anti-fallback reassignment.
"""

from __future__ import annotations

from datetime import timedelta
from uuid import UUID

import structlog
from pydantic import ValidationError

from contactclass.activity import ActivityLog
from contactclass.ai.fallback import apply_anti_fallback
from contactclass.ai.openai_provider import AIClassifier
from contactclass.budget import BudgetGovernor
from contactclass.cache import CacheNamespace, CacheStore
from contactclass.canonical.keys import ai_cache_key
from contactclass.classification.rules_engine import RulesEngine
from contactclass.config import LLMConfig
from contactclass.db.models import JobModel, JobRowModel
from contactclass.db.repository import JobRepository, RowQuery
from contactclass.exceptions import ConfigurationError, ProviderError
from contactclass.models import (
    AIBatchResponse,
    AIContactInput,
    AIResult,
    Category,
    ClassificationMethod,
    Contact,
    EnrichmentPayload,
    JobStatus,
    Language,
    ModelTier,
    ProcessingStep,
    RowStatus,
    Severity,
    utcnow,
)
from contactclass.pipeline.outcome import StageOutcome

logger = structlog.get_logger(__name__)

# Prompt and response excerpts kept in the activity feed
_EXCERPT_CHARS = 4000


def _excerpt(text: str | None) -> str | None:
    if text is None or len(text) <= _EXCERPT_CHARS:
        return text
    return text[:_EXCERPT_CHARS] + "..."


def build_ai_input(index: int, row: JobRowModel) -> AIContactInput:
    contact = Contact.model_validate(row.normalized_json)
    enrichment = (
        EnrichmentPayload.model_validate(row.enrichment_json) if row.enrichment_json else None
    )
    return AIContactInput(
        index=index,
        name=contact.name,
        activities=contact.activities,
        email=contact.email,
        city=contact.city,
        country=contact.country,
        enrichment_summary=(enrichment.signals_summary or None) if enrichment else None,
    )


class AIStage:
    """Run up to ``batches_per_invocation`` AI batches for one job."""

    def __init__(
        self,
        repository: JobRepository,
        activity: ActivityLog,
        cache: CacheStore,
        classifier: AIClassifier | None,
        governor: BudgetGovernor,
        engine: RulesEngine,
        config: LLMConfig,
        cache_ttl: timedelta = timedelta(days=90),
        requeue_delay_seconds: float = 5.0,
    ):
        self.repository = repository
        self.activity = activity
        self.cache = cache
        self.classifier = classifier
        self.governor = governor
        self.engine = engine
        self.config = config
        self.cache_ttl = cache_ttl
        self.requeue_delay_seconds = requeue_delay_seconds

    def _query(self, limit: int | None) -> RowQuery:
        return RowQuery.for_ai(
            accept_threshold=self.config.accept_threshold,
            max_attempts=self.config.max_attempts,
            limit=limit,
        )

    async def run(self, job: JobModel) -> StageOutcome:
        language = Language(job.language or Language.EN.value)
        processed = 0

        # ai_rows is read from the job below, so start from fresh aggregates
        await self.repository.refresh_stats(job.id)

        for batch_number in range(1, self.config.batches_per_invocation + 1):
            if not await self.repository.count_rows(job.id, self._query(None)):
                return self._completed(processed)

            latest = await self.repository.get_job(job.id)
            if not self.governor.may_classify_with_ai(latest):
                return await self._budget_exhausted(latest, processed)

            if self.classifier is None:
                raise ConfigurationError("OPENAI_API_KEY is required for AI classification")

            limit = min(self.config.batch_size, self.governor.remaining_ai_rows(latest))
            rows = await self.repository.claim_rows(job.id, self._query(limit))
            if not rows:
                break

            processed += await self._process_batch(latest, rows, language, batch_number)
            await self.repository.refresh_stats(job.id)

        if not await self.repository.count_rows(job.id, self._query(None)):
            return self._completed(processed)
        if processed == 0:
            # Remaining rows are claimed by an overlapping invocation
            return StageOutcome(defer_seconds=self.requeue_delay_seconds)
        return StageOutcome(processed=processed, current_step="AI classification")

    @staticmethod
    def _completed(processed: int) -> StageOutcome:
        return StageOutcome(
            processed=processed,
            next_status=JobStatus.COMPLETED,
            current_step="Classification complete",
        )

    async def _budget_exhausted(self, job: JobModel, processed: int) -> StageOutcome:
        flagged = await self.repository.mark_needs_review(job.id, RowQuery.unclassified())
        await self.repository.refresh_stats(job.id)

        if self.governor.tokens_exhausted(job):
            cause = f"token cap reached ({job.ai_tokens_estimate}/{self.governor.max_ai_tokens})"
        else:
            cause = (
                f"AI row cap reached ({job.ai_rows}/{self.governor.ai_row_allowance(job)} rows, "
                f"{self.governor.max_ai_rows_percent:g}%)"
            )
        await self.activity.append(
            job.id,
            f"AI budget exhausted: {cause}. {flagged} unclassified rows flagged for review.",
            Severity.WARNING,
            {"flagged_rows": flagged, "ai_tokens_estimate": job.ai_tokens_estimate},
        )
        return StageOutcome(
            processed=processed,
            next_status=JobStatus.COMPLETED,
            budget_exhausted=True,
            current_step="AI budget exhausted",
        )

    async def _process_batch(
        self,
        job: JobModel,
        rows: list[JobRowModel],
        language: Language,
        batch_number: int,
    ) -> int:
        inputs = [build_ai_input(i, row) for i, row in enumerate(rows)]
        cache_key = ai_cache_key(inputs, language)

        results = await self._cached_results(cache_key)
        if results is None:
            try:
                results = await self._classify(job.id, inputs, rows, language, batch_number)
            except ProviderError as e:
                await self._fail_batch(job.id, rows, batch_number, e)
                return 0

            models = sorted({r.model for r in results if r.model})
            await self.cache.put(
                CacheNamespace.AI,
                cache_key,
                {"results": [r.model_dump(mode="json") for r in results]},
                self.cache_ttl,
                model_used=",".join(models) or None,
            )
        else:
            await self.activity.append(
                job.id,
                f"AI batch {batch_number}: {len(rows)} rows served from cache",
                Severity.INFO,
            )

        return await self._write_rows(job.id, rows, results, language)

    async def _cached_results(self, cache_key: str) -> list[AIResult] | None:
        entry = await self.cache.get(CacheNamespace.AI, cache_key)
        if entry is None or not entry.payload:
            return None
        try:
            return [AIResult.model_validate(r) for r in entry.payload["results"]]
        except (KeyError, TypeError, ValidationError) as e:
            logger.warning("ai_cache_entry_invalid", key=cache_key, error=str(e))
            return None

    async def _classify(
        self,
        job_id: UUID,
        inputs: list[AIContactInput],
        rows: list[JobRowModel],
        language: Language,
        batch_number: int,
    ) -> list[AIResult]:
        """Primary call plus optional escalation; returns results by batch position."""
        response = await self.classifier.classify(inputs, language, ModelTier.PRIMARY)
        await self.repository.increment_job_counters(job_id, ai_tokens_estimate=response.tokens_used)
        await self._log_interaction(
            job_id, response, rows, f"AI Request (Primary Model) - Batch {batch_number}"
        )

        by_index = {r.index: r for r in response.results if 0 <= r.index < len(inputs)}
        low = [
            i
            for i, result in sorted(by_index.items())
            if result.confidence < self.config.escalation_threshold
        ]

        if low and len(low) < len(inputs) / 2:
            latest = await self.repository.get_job(job_id)
            if self.governor.tokens_exhausted(latest):
                await self.activity.append(
                    job_id,
                    f"Skipping escalation of {len(low)} rows: AI token cap reached",
                    Severity.WARNING,
                )
            else:
                await self._escalate(job_id, inputs, rows, low, by_index, language, batch_number)

        return [by_index[i] for i in sorted(by_index)]

    async def _escalate(
        self,
        job_id: UUID,
        inputs: list[AIContactInput],
        rows: list[JobRowModel],
        low: list[int],
        by_index: dict[int, AIResult],
        language: Language,
        batch_number: int,
    ) -> None:
        await self.activity.append(
            job_id,
            f"Escalating {len(low)} low-confidence rows to advanced model",
            Severity.INFO,
        )
        subset = [inputs[i] for i in low]
        try:
            response = await self.classifier.classify(subset, language, ModelTier.SECONDARY)
        except ProviderError as e:
            await self.activity.append(
                job_id,
                f"Escalation failed, keeping primary results: {e}",
                Severity.WARNING,
            )
            return

        await self.repository.increment_job_counters(job_id, ai_tokens_estimate=response.tokens_used)
        await self._log_interaction(
            job_id,
            response,
            [rows[i] for i in low],
            f"AI Request (Secondary Model) - Batch {batch_number}",
        )
        for result in response.results:
            if result.index in low:
                by_index[result.index] = result

    async def _log_interaction(
        self,
        job_id: UUID,
        response: AIBatchResponse,
        rows: list[JobRowModel],
        message: str,
    ) -> None:
        await self.activity.append(
            job_id,
            message,
            Severity.INFO,
            {
                "type": "AI_INTERACTION",
                "model": response.model,
                "tokens_used": response.tokens_used,
                "system_prompt": _excerpt(response.system_prompt),
                "user_prompt": _excerpt(response.user_prompt),
                "raw_response": _excerpt(response.raw_response),
                "row_indices": [row.row_index for row in rows],
                "timestamp": utcnow().isoformat(),
            },
        )

    async def _fail_batch(
        self, job_id: UUID, rows: list[JobRowModel], batch_number: int, error: ProviderError
    ) -> None:
        for row in rows:
            await self.repository.update_row(
                row.id,
                {
                    "row_status": RowStatus.FAILED.value,
                    "needs_review": True,
                    "last_processing_step": ProcessingStep.AI.value,
                },
                increments={"ai_attempts": 1},
            )
        await self.activity.append(
            job_id,
            f"AI batch {batch_number} failed: {error}",
            Severity.ERROR,
            {"provider": error.provider, "row_indices": [row.row_index for row in rows]},
        )

    async def _write_rows(
        self,
        job_id: UUID,
        rows: list[JobRowModel],
        results: list[AIResult],
        language: Language,
    ) -> int:
        by_index = {r.index: r for r in results}
        written = missing = reassigned = 0

        for position, row in enumerate(rows):
            result = by_index.get(position)
            if result is None:
                missing += 1
                await self.repository.update_row(
                    row.id,
                    {
                        "row_status": RowStatus.FAILED.value,
                        "needs_review": True,
                        "last_processing_step": ProcessingStep.AI.value,
                    },
                    increments={"ai_attempts": 1},
                )
                continue

            contact = Contact.model_validate(row.normalized_json)
            enrichment = (
                EnrichmentPayload.model_validate(row.enrichment_json)
                if row.enrichment_json
                else None
            )
            prior = Category(row.final_category) if row.final_category else None

            final = apply_anti_fallback(
                result,
                contact,
                self.engine,
                enrichment=enrichment,
                prior=prior,
                confidence_ceiling=self.config.fallback_confidence_ceiling,
                confidence_cap=self.config.reassigned_confidence_cap,
                language=language,
            )
            if final is not result:
                reassigned += 1

            hybrid = (
                prior is not None
                and row.classification_method == ClassificationMethod.RULES.value
            )
            method = ClassificationMethod.HYBRID if hybrid else ClassificationMethod.AI

            updated = await self.repository.update_row(
                row.id,
                {
                    "final_category": final.category.value,
                    "confidence": final.confidence,
                    "needs_review": final.needs_review
                    or final.confidence < self.config.accept_threshold,
                    "classification_method": method.value,
                    "ai_used": True,
                    "model_used": final.model,
                    "row_status": RowStatus.COMPLETED.value,
                    "last_processing_step": ProcessingStep.AI.value,
                    language.reason_field: final.reason,
                    language.signals_field: final.signals_used,
                },
                increments={"ai_attempts": 1},
            )
            if updated:
                written += 1

        severity = Severity.WARNING if missing else Severity.SUCCESS
        await self.activity.append(
            job_id,
            f"AI batch completed. Classified: {written}, Missing results: {missing}, "
            f"Reassigned from fallback: {reassigned}",
            severity,
            {"classified": written, "missing": missing, "reassigned": reassigned},
        )
        return written
