"""Normalization of raw tabular records into canonical contacts.

Accepts the 25-column French export ("Nom complet", "E-mail", "Activités",
...) as well as common English headers. Pure functions, no I/O.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from contactclass.models import Contact

# Fixed column layout of the contact export
EXPECTED_COLUMNS = (
    "Avatar 128",
    "Nom complet",
    "N° TVA",
    "Prochain avis",
    "Activation",
    "Partner Level",
    "Envoi de la facture",
    "format eInvoice",
    "E-mail",
    "Téléphone",
    "Vendeur",
    "Activités",
    "Rue",
    "Ville",
    "État",
    "Pays",
    "Stats",
    "Étiquettes",
    "Responsable",
    "Rappels",
    "Statut de la relance",
    "Prochain rappel",
    "Niveau de relance",
    "Montant dû",
    "Total en retard",
)

_FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("nom complet", "name", "full name", "company", "nom"),
    "email": ("e-mail", "email", "mail"),
    "phone": ("téléphone", "telephone", "phone"),
    "activities": ("activités", "activites", "activities", "activity"),
    "street": ("rue", "street", "address"),
    "city": ("ville", "city"),
    "state": ("état", "etat", "state"),
    "country": ("pays", "country"),
    "tax_id": ("n° tva", "tva", "vat", "vat number", "tax id"),
    "vendor": ("vendeur", "vendor", "salesperson"),
    "labels": ("étiquettes", "etiquettes", "labels", "tags"),
}

_HEADER_TO_FIELD = {alias: fieldname for fieldname, aliases in _FIELD_ALIASES.items() for alias in aliases}

_WHITESPACE = re.compile(r"\s+")


def clean_value(value: Any) -> str | None:
    """Trim and collapse whitespace; empty values become None."""
    if value is None:
        return None
    text = _WHITESPACE.sub(" ", str(value)).strip()
    return text or None


def email_domain(email: str | None) -> str | None:
    """Return the lower-cased domain part of an e-mail address."""
    if not email or "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1].strip().lower()
    return domain or None


def normalize_contact(record: Mapping[str, Any]) -> Contact:
    """Map a raw tabular record to a canonical Contact.

    Args:
        record: Column header -> cell value

    Returns:
        Contact with known fields mapped and remaining non-empty columns in
        ``extra``
    """
    fields: dict[str, str | None] = {}
    extra: dict[str, str] = {}

    for header, raw in record.items():
        if header is None:
            continue
        value = clean_value(raw)
        fieldname = _HEADER_TO_FIELD.get(_WHITESPACE.sub(" ", str(header)).strip().lower())

        if fieldname is None:
            if value is not None:
                extra[str(header).strip()] = value
            continue

        # First non-empty column wins when aliases overlap
        if fields.get(fieldname) is None:
            fields[fieldname] = value

    if fields.get("email"):
        fields["email"] = fields["email"].lower()

    return Contact(
        name=fields.pop("name", None) or "",
        extra=extra,
        **fields,
    )
