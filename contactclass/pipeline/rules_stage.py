"""Rules stage: free keyword classification before any paid call."""

from __future__ import annotations

import structlog

from contactclass.activity import ActivityLog
from contactclass.classification.rules_engine import RulesEngine
from contactclass.config import EnrichmentConfig, RulesConfig
from contactclass.db.models import JobModel
from contactclass.db.repository import JobRepository, RowQuery
from contactclass.models import (
    ClassificationMethod,
    Contact,
    JobStatus,
    Language,
    ProcessingStep,
    RowStatus,
    Severity,
)
from contactclass.pipeline.outcome import StageOutcome

logger = structlog.get_logger(__name__)

_HINT_REASON = {
    Language.EN: "Field heuristics",
    Language.FR: "Heuristiques de champs",
}


class RulesStage:
    """Classify one batch of unseen rows with the rules engine."""

    def __init__(
        self,
        repository: JobRepository,
        activity: ActivityLog,
        engine: RulesEngine,
        config: RulesConfig,
        enrichment_config: EnrichmentConfig,
        requeue_delay_seconds: float = 5.0,
    ):
        self.repository = repository
        self.activity = activity
        self.engine = engine
        self.config = config
        self.enrichment_config = enrichment_config
        self.requeue_delay_seconds = requeue_delay_seconds

    async def run(self, job: JobModel) -> StageOutcome:
        language = Language(job.language or Language.EN.value)
        rows = await self.repository.claim_rows(job.id, RowQuery.for_rules(self.config.batch_size))

        accepted = hinted = 0
        for row in rows:
            contact = Contact.model_validate(row.normalized_json)
            result = self.engine.classify(contact, language)

            if result is not None:
                accepted += 1
                values = {
                    "final_category": result.category.value,
                    "confidence": result.confidence,
                    "needs_review": result.needs_review,
                    "classification_method": ClassificationMethod.RULES.value,
                    "ai_used": False,
                    "row_status": RowStatus.COMPLETED.value,
                    "last_processing_step": ProcessingStep.RULES.value,
                    language.reason_field: result.reason,
                    language.signals_field: result.signals_used,
                }
            else:
                hint = self.engine.apply_field_heuristics(contact)
                if hint is not None:
                    hinted += 1
                    values = {
                        "final_category": hint.category.value,
                        "confidence": self.config.heuristic_confidence,
                        "needs_review": True,
                        "classification_method": ClassificationMethod.RULES.value,
                        "last_processing_step": ProcessingStep.RULES.value,
                        language.reason_field: f"{_HINT_REASON[language]}: {', '.join(hint.signals)}",
                        language.signals_field: "; ".join(hint.signals),
                    }
                else:
                    values = {"last_processing_step": ProcessingStep.RULES.value}

            await self.repository.update_row(row.id, values)

        if rows:
            await self.repository.refresh_stats(job.id)
            await self.activity.append(
                job.id,
                f"Rules batch completed. Classified: {accepted}, Hints: {hinted}, "
                f"Unresolved: {len(rows) - accepted - hinted}",
                Severity.SUCCESS,
                {"accepted": accepted, "hinted": hinted, "rows": len(rows)},
            )
            logger.info("rules_batch_done", rows=len(rows), accepted=accepted, hinted=hinted)

        if await self.repository.count_rows(job.id, RowQuery.for_rules(None)):
            if not rows:
                # Remaining rows are claimed by an overlapping invocation
                return StageOutcome(defer_seconds=self.requeue_delay_seconds)
            return StageOutcome(processed=len(rows), current_step="Rules classification")

        return await self._finish(job, len(rows))

    async def _finish(self, job: JobModel, processed: int) -> StageOutcome:
        """Choose the next status once every row has been through rules."""
        remaining = await self.repository.count_rows(
            job.id,
            RowQuery(enrichment_floor=self.enrichment_config.confidence_floor, limit=None),
        )
        if remaining:
            await self.activity.append(
                job.id, f"{remaining} rows need enrichment or AI", Severity.INFO
            )
            return StageOutcome(
                processed=processed,
                next_status=JobStatus.ENRICHING,
                current_step="Ready for enrichment",
            )

        await self.activity.append(
            job.id, "All rows classified by rules", Severity.SUCCESS
        )
        return StageOutcome(
            processed=processed,
            next_status=JobStatus.COMPLETED,
            current_step="Classification complete",
        )
