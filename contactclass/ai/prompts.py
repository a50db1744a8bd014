"""Prompts and structured-output schema for AI classification."""

from __future__ import annotations

from typing import Any

from contactclass.models import AIContactInput, Category, Language

SYSTEM_PROMPT_EN = """You are an expert at classifying professional contacts for a business database. Use the data provided (name, email, stated activities and web enrichment signals) to put each contact in one category.

CATEGORIES:
- CLIENT: End consumers, direct patients, individual buyers.
- PRESCRIBER: Doctors, dentists, medical specialists, clinics, hospitals, pharmacies, or any entity that prescribes or refers healthcare services.
- SUPPLIER: Product or service providers, wholesalers, manufacturers, B2B distributors.

INSTRUCTIONS:
1. Reason from the evidence. Do not answer "insufficient information" when the business name, email domain or search snippets support a reasonable deduction.
2. Web enrichment (search snippets, website metadata) is the strongest signal. Read it carefully.
3. The 'reason' field is one human-readable sentence naming the evidence (e.g. "The search results describe a dental clinic in Lyon").
4. Use A_QUALIFIER ONLY when there is no evidence at all to tell categories apart. Prefer a lower-confidence guess.
5. Give realistic confidence. Clear matches backed by enrichment should be 90 or more."""

SYSTEM_PROMPT_FR = """Vous êtes un expert en classification de contacts professionnels. Analysez les informations fournies (nom, email, activités déclarées et surtout les signaux d'enrichissement web) pour classer chaque contact dans une catégorie.

CATÉGORIES :
- CLIENT : Particuliers, clients finaux, consommateurs, patients en contact direct.
- PRESCRIBER : Professionnels de santé (médecins, dentistes, etc.), cliniques, hôpitaux, pharmacies, ou toute entité qui recommande des services de santé.
- SUPPLIER : Fournisseurs de produits ou services, grossistes, fabricants, distributeurs B2B.

CONSIGNES :
1. Raisonnez à partir des indices. Ne répondez pas "informations insuffisantes" si le nom, le domaine email ou les snippets permettent une déduction raisonnable.
2. Les données d'enrichissement (snippets web, métadonnées du site) sont le signal le plus fort. Analysez-les attentivement.
3. Le champ 'reason' est une phrase lisible expliquant l'indice retenu (ex : "Le site mentionne la vente en gros de matériel médical").
4. Utilisez A_QUALIFIER UNIQUEMENT en l'absence totale d'informations exploitables. Préférez une hypothèse avec une confiance plus faible.
5. Donnez une confiance réaliste. Une correspondance claire appuyée par l'enrichissement doit être de 90 ou plus."""

_SYSTEM_PROMPTS = {
    Language.EN: SYSTEM_PROMPT_EN,
    Language.FR: SYSTEM_PROMPT_FR,
}

RESPONSE_SCHEMA: dict[str, Any] = {
    "name": "contact_classification",
    "strict": True,
    "schema": {
        "type": "object",
        "properties": {
            "results": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "index": {"type": "number"},
                        "final_category": {
                            "type": "string",
                            "enum": [c.value for c in Category],
                        },
                        "confidence": {"type": "number"},
                        "reason": {"type": "string"},
                        "public_signals_used": {"type": "string"},
                        "needs_review": {"type": "boolean"},
                    },
                    "required": [
                        "index",
                        "final_category",
                        "confidence",
                        "reason",
                        "public_signals_used",
                        "needs_review",
                    ],
                    "additionalProperties": False,
                },
            },
        },
        "required": ["results"],
        "additionalProperties": False,
    },
}


def system_prompt(language: Language) -> str:
    return _SYSTEM_PROMPTS[Language(language)]


def format_contact(contact: AIContactInput) -> str:
    lines = [f"ID: {contact.index} | Name: {contact.name}"]
    if contact.email:
        lines.append(f"Email: {contact.email}")
    if contact.activities:
        lines.append(f"Stated Activities: {contact.activities}")
    if contact.city or contact.country:
        lines.append(f"Location: {contact.city or ''}, {contact.country or ''}")
    if contact.enrichment_summary:
        lines.append(f"WEB ENRICHMENT: {contact.enrichment_summary}")
    return "\n".join(lines)


def build_user_prompt(contacts: list[AIContactInput]) -> str:
    """Render a batch of contacts as one user message."""
    body = "\n\n---\n\n".join(format_contact(c) for c in contacts)
    return f"Please classify the following contacts based on all available data:\n\n{body}"
