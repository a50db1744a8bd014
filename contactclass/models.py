"""Pydantic models and enums shared by every pipeline stage.

The category set is closed: free-text labels are converted with
``Category.from_label`` at the system boundary and never travel as strings.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the database columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Category(str, Enum):
    """Contact classification outcome."""

    CLIENT = "CLIENT"
    PRESCRIBER = "PRESCRIBER"
    SUPPLIER = "SUPPLIER"
    A_QUALIFIER = "A_QUALIFIER"  # Needs qualification (fallback)

    @classmethod
    def fallback(cls) -> Category:
        return cls.A_QUALIFIER

    @classmethod
    def substantive(cls) -> tuple[Category, ...]:
        return (cls.CLIENT, cls.PRESCRIBER, cls.SUPPLIER)

    @property
    def is_fallback(self) -> bool:
        return self is Category.A_QUALIFIER

    @classmethod
    def from_label(cls, label: str) -> Category:
        """Convert a legacy or human label to a Category.

        Raises:
            ValueError: If the label does not name a known category
        """
        key = " ".join(label.strip().lower().replace("_", " ").replace("-", " ").split())
        try:
            return _CATEGORY_LABELS[key]
        except KeyError:
            raise ValueError(f"Unknown category label: {label!r}") from None


_CATEGORY_LABELS: dict[str, Category] = {
    "client": Category.CLIENT,
    "customer": Category.CLIENT,
    "prescriber": Category.PRESCRIBER,
    "prescripteur": Category.PRESCRIBER,
    "supplier": Category.SUPPLIER,
    "vendor": Category.SUPPLIER,
    "fournisseur": Category.SUPPLIER,
    "a qualifier": Category.A_QUALIFIER,
    "à qualifier": Category.A_QUALIFIER,
    "to qualify": Category.A_QUALIFIER,
    "needs qualification": Category.A_QUALIFIER,
    "unqualified": Category.A_QUALIFIER,
}


class ClassificationMethod(str, Enum):
    """Provenance of a row's final category."""

    RULES = "RULES"
    AI = "AI"
    HYBRID = "HYBRID"  # Rules found a category, AI revised it
    MANUAL = "MANUAL"  # Set by a reviewer on a row no stage had classified


class JobStatus(str, Enum):
    """Job lifecycle states, declared in pipeline order."""

    PENDING = "PENDING"
    PARSING = "PARSING"
    RULES = "RULES"
    ENRICHING = "ENRICHING"
    AI_CLASSIFYING = "AI_CLASSIFYING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def order(self) -> int:
        return _JOB_STATUS_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_JOB_STATUS_ORDER = list(JobStatus)


class RowStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class EnrichmentStatus(str, Enum):
    SEARCHING = "SEARCHING"
    CLASSIFYING = "CLASSIFYING"
    DONE = "DONE"
    FAILED = "FAILED"


class ProcessingStep(str, Enum):
    """Last pipeline step that touched a row."""

    PARSE = "PARSE"
    RULES = "RULES"
    ENRICH = "ENRICH"
    AI = "AI"
    EXPORT = "EXPORT"


class Severity(str, Enum):
    """Activity feed severity."""

    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"


class Language(str, Enum):
    EN = "en"
    FR = "fr"

    @property
    def reason_field(self) -> str:
        return f"reason_{self.value}"

    @property
    def signals_field(self) -> str:
        return f"public_signals_{self.value}"


class ModelTier(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"


class Contact(BaseModel):
    """Canonical contact shape produced by normalization."""

    name: str = ""
    email: str | None = None
    phone: str | None = None
    activities: str | None = None
    street: str | None = None
    city: str | None = None
    state: str | None = None
    country: str | None = None
    tax_id: str | None = None
    vendor: str | None = None
    labels: str | None = None

    # Remaining source columns, kept for export and manual review
    extra: dict[str, str] = Field(default_factory=dict)

    @property
    def email_domain(self) -> str | None:
        from contactclass.canonical.normalize import email_domain

        return email_domain(self.email)

    def searchable_text(self) -> str:
        """Lower-cased free text used by keyword matching."""
        parts = [self.name, self.activities, self.labels, self.vendor]
        return " ".join(p for p in parts if p).lower()


class ClassificationResult(BaseModel):
    """Outcome of a rules or AI classification for one contact."""

    category: Category
    confidence: int = Field(ge=0, le=100)
    reason: str
    signals_used: str = ""
    needs_review: bool = False
    method: ClassificationMethod = ClassificationMethod.RULES


class FieldHint(BaseModel):
    """Advisory category hint derived from structural fields."""

    category: Category
    score: int
    signals: list[str] = Field(default_factory=list)


class EnrichmentPayload(BaseModel):
    """Public web signals gathered for one contact identity."""

    domain: str | None = None
    business_type: str | None = None
    categories: list[str] = Field(default_factory=list)
    website_title: str | None = None
    website_description: str | None = None
    search_snippets: list[str] = Field(default_factory=list)
    signals_summary: str = ""

    @property
    def is_usable(self) -> bool:
        """True when at least one lookup returned actual signal."""
        return bool(
            self.business_type
            or self.categories
            or self.website_title
            or self.website_description
            or self.search_snippets
        )


class AIContactInput(BaseModel):
    """One contact as sent to the AI provider.

    ``index`` is the position inside the batch, so identical batches from
    different jobs share a cache entry.
    """

    index: int
    name: str
    activities: str | None = None
    email: str | None = None
    city: str | None = None
    country: str | None = None
    enrichment_summary: str | None = None

    def cache_fields(self) -> dict[str, Any]:
        return self.model_dump(exclude={"index"})


class AIResult(BaseModel):
    """Structured per-contact answer from the AI provider."""

    index: int
    category: Category
    confidence: int
    reason: str = ""
    signals_used: str = ""
    needs_review: bool = False
    model: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> int:
        return max(0, min(100, int(round(float(v)))))


class AIBatchResponse(BaseModel):
    """Provider response for one batch call."""

    results: list[AIResult]
    model: str
    tokens_used: int = 0
    system_prompt: str | None = None
    user_prompt: str | None = None
    raw_response: str | None = None
