"""Unit tests for contact normalization and cache keys."""

from __future__ import annotations

from contactclass.canonical.keys import ai_cache_key, enrichment_cache_key
from contactclass.canonical.normalize import clean_value, email_domain, normalize_contact
from contactclass.models import AIContactInput, Contact, Language


class TestNormalizeContact:
    """Test mapping of raw export records."""

    def test_french_headers(self):
        """Test the French export columns map to canonical fields."""
        contact = normalize_contact(
            {
                "Nom complet": "  Pharmacie   du Centre ",
                "E-mail": "Contact@PharmaCentre.fr",
                "Activités": "pharmacien à Lyon",
                "Ville": "Lyon",
                "Pays": "France",
                "N° TVA": "FR123456789",
                "Montant dû": "0,00",
            }
        )

        assert contact.name == "Pharmacie du Centre"
        assert contact.email == "contact@pharmacentre.fr"
        assert contact.activities == "pharmacien à Lyon"
        assert contact.city == "Lyon"
        assert contact.country == "France"
        assert contact.tax_id == "FR123456789"
        assert contact.extra == {"Montant dû": "0,00"}

    def test_english_headers_case_insensitive(self):
        contact = normalize_contact({"NAME": "Acme", "Email": "a@acme.com", "City": "Leeds"})

        assert contact.name == "Acme"
        assert contact.email == "a@acme.com"
        assert contact.city == "Leeds"

    def test_empty_values_become_none(self):
        contact = normalize_contact({"Nom complet": "", "E-mail": "   ", "Ville": None})

        assert contact.name == ""
        assert contact.email is None
        assert contact.city is None
        assert contact.extra == {}

    def test_first_non_empty_alias_wins(self):
        contact = normalize_contact({"Nom complet": "", "Name": "Fallback Name"})
        assert contact.name == "Fallback Name"


def test_clean_value_collapses_whitespace():
    assert clean_value(" a \n b\t") == "a b"
    assert clean_value("") is None
    assert clean_value(42) == "42"


def test_email_domain_helper():
    assert email_domain("x@Example.COM") == "example.com"
    assert email_domain("nobody") is None
    assert email_domain(None) is None


class TestEnrichmentCacheKey:
    """Test enrichment cache key shape."""

    def test_domain_preferred_over_name(self):
        contact = Contact(name="Clinique X", email="info@cliniquex.fr", city="Lyon", country="France")
        assert enrichment_cache_key(contact) == "cliniquex.fr:lyon:france"

    def test_name_used_without_email(self):
        contact = Contact(name="  Clinique X ", city="LYON")
        assert enrichment_cache_key(contact) == "clinique x:lyon:"

    def test_shared_domain_city_country_share_key(self):
        a = Contact(name="Alice", email="alice@acme.fr", city="Paris", country="France")
        b = Contact(name="Bob", email="bob@ACME.fr", city="paris", country="FRANCE")
        assert enrichment_cache_key(a) == enrichment_cache_key(b)


class TestAICacheKey:
    """Test AI cache key determinism."""

    def test_indices_not_part_of_key(self):
        batch_a = [AIContactInput(index=0, name="Acme"), AIContactInput(index=1, name="Beta")]
        batch_b = [AIContactInput(index=5, name="Acme"), AIContactInput(index=9, name="Beta")]

        assert ai_cache_key(batch_a, Language.EN) == ai_cache_key(batch_b, Language.EN)

    def test_language_and_order_change_key(self):
        batch = [AIContactInput(index=0, name="Acme"), AIContactInput(index=1, name="Beta")]

        assert ai_cache_key(batch, Language.EN) != ai_cache_key(batch, Language.FR)
        assert ai_cache_key(batch, Language.EN) != ai_cache_key(list(reversed(batch)), Language.EN)

    def test_key_is_sha256_hex(self):
        key = ai_cache_key([AIContactInput(index=0, name="Acme")], Language.EN)
        assert len(key) == 64
        int(key, 16)
