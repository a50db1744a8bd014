"""Unit tests for anti-fallback reassignment."""

from __future__ import annotations

from contactclass.ai.fallback import apply_anti_fallback, choose_substantive_category
from contactclass.models import AIResult, Category, Contact, EnrichmentPayload, Language


class TestChooseSubstantiveCategory:
    """Test the deterministic selection order."""

    def test_prior_rules_category_first(self, rules_engine):
        contact = Contact(name="x", activities="grossiste")

        chosen = choose_substantive_category(contact, rules_engine, prior=Category.PRESCRIBER)

        assert chosen is Category.PRESCRIBER

    def test_prior_fallback_is_ignored(self, rules_engine):
        contact = Contact(name="x", activities="grossiste")

        chosen = choose_substantive_category(contact, rules_engine, prior=Category.A_QUALIFIER)

        assert chosen is Category.SUPPLIER

    def test_enrichment_text_is_scored(self, rules_engine):
        """Test keywords in enrichment signals count even when the contact has none."""
        enrichment = EnrichmentPayload(search_snippets=["Cabinet dentiste, Lyon 3e"])

        chosen = choose_substantive_category(Contact(name="Sophie L."), rules_engine, enrichment)

        assert chosen is Category.PRESCRIBER

    def test_field_hint_when_no_keywords(self, rules_engine):
        contact = Contact(name="x", tax_id="FR99887766")

        assert choose_substantive_category(contact, rules_engine) is Category.SUPPLIER

    def test_client_as_last_resort(self, rules_engine):
        contact = Contact(name="", email="someone@gmail.com")

        assert choose_substantive_category(contact, rules_engine) is Category.CLIENT


class TestApplyAntiFallback:
    """Test the persisted-result policy."""

    def test_confident_fallback_is_reassigned(self, rules_engine):
        result = AIResult(
            index=0, category=Category.A_QUALIFIER, confidence=85, reason="Unclear", model="m"
        )

        final = apply_anti_fallback(result, Contact(name="x"), rules_engine)

        assert final.category is Category.CLIENT
        assert final.confidence == 50
        assert final.needs_review is True
        assert "Reassigned from A_QUALIFIER" in final.reason
        assert final.model == "m"

    def test_reassigned_confidence_never_raised(self, rules_engine):
        result = AIResult(index=0, category=Category.A_QUALIFIER, confidence=40)

        final = apply_anti_fallback(result, Contact(name="x"), rules_engine)

        assert final.confidence == 40

    def test_low_confidence_fallback_kept(self, rules_engine):
        result = AIResult(index=0, category=Category.A_QUALIFIER, confidence=30)

        assert apply_anti_fallback(result, Contact(name="x"), rules_engine) is result

    def test_substantive_result_untouched(self, rules_engine):
        result = AIResult(index=0, category=Category.SUPPLIER, confidence=95)

        assert apply_anti_fallback(result, Contact(name="x"), rules_engine) is result

    def test_french_note(self, rules_engine):
        result = AIResult(index=0, category=Category.A_QUALIFIER, confidence=60, reason="")

        final = apply_anti_fallback(result, Contact(name="x"), rules_engine, language=Language.FR)

        assert final.reason == "Réattribué depuis A_QUALIFIER, à vérifier"
