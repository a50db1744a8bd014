"""Deterministic cache keys for enrichment and AI responses.

Enrichment key: ``domain-or-name:city:country`` (lower-cased, trimmed).
AI key: SHA-256 of the canonical JSON of the batch inputs plus the language.
Row indices are not part of the AI key, so identical batches share an entry.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Sequence

from contactclass.models import AIContactInput, Contact, Language


def _part(value: str | None) -> str:
    return (value or "").strip().lower()


def enrichment_cache_key(contact: Contact) -> str:
    """Build the enrichment cache key (e-mail domain preferred over name)."""
    identity = contact.email_domain or _part(contact.name)
    return f"{identity}:{_part(contact.city)}:{_part(contact.country)}"


def ai_cache_key(contacts: Sequence[AIContactInput], language: Language) -> str:
    """Build the AI response cache key for a batch.

    Args:
        contacts: Batch inputs in batch order
        language: Output language of the batch

    Returns:
        64-character hex digest
    """
    payload = {
        "language": Language(language).value,
        "contacts": [c.cache_fields() for c in contacts],
    }
    canonical = json.dumps(payload, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
