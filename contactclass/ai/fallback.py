"""Anti-fallback reassignment for AI answers.

A confident "needs qualification" answer is never stored: the row gets a
substantive category chosen deterministically, a capped confidence and a
review flag.
"""

from __future__ import annotations

from contactclass.classification.rules_engine import RulesEngine
from contactclass.models import AIResult, Category, Contact, EnrichmentPayload, Language

_REASSIGNED_NOTE = {
    Language.EN: "Reassigned from A_QUALIFIER, needs review",
    Language.FR: "Réattribué depuis A_QUALIFIER, à vérifier",
}


def choose_substantive_category(
    contact: Contact,
    engine: RulesEngine,
    enrichment: EnrichmentPayload | None = None,
    prior: Category | None = None,
) -> Category:
    """Pick a substantive category for a contact the AI could not place.

    Order: prior rules category, strongest keyword score over the contact
    text plus enrichment signals, field heuristic hint, CLIENT.
    """
    if prior is not None and not Category(prior).is_fallback:
        return Category(prior)

    text = contact.searchable_text()
    if enrichment is not None:
        text = " ".join(
            [text, enrichment.signals_summary, *enrichment.search_snippets, *enrichment.categories]
        )
    top = engine.score_categories(text)[0]
    if top.score > 0:
        return top.category

    hint = engine.apply_field_heuristics(contact)
    if hint is not None:
        return hint.category

    return Category.CLIENT


def apply_anti_fallback(
    result: AIResult,
    contact: Contact,
    engine: RulesEngine,
    enrichment: EnrichmentPayload | None = None,
    prior: Category | None = None,
    confidence_ceiling: int = 30,
    confidence_cap: int = 50,
    language: Language = Language.EN,
) -> AIResult:
    """Return ``result`` unchanged unless it is a confident fallback."""
    if not result.category.is_fallback or result.confidence <= confidence_ceiling:
        return result

    category = choose_substantive_category(contact, engine, enrichment, prior)
    note = _REASSIGNED_NOTE[Language(language)]
    reason = f"{result.reason} ({note})" if result.reason else note
    return result.model_copy(
        update={
            "category": category,
            "confidence": min(result.confidence, confidence_cap),
            "needs_review": True,
            "reason": reason,
        }
    )
