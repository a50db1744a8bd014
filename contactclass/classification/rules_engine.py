"""YAML-driven weighted keyword rules engine.

Runs first in the pipeline so that obvious contacts never cost a paid call.
Scores CLIENT, PRESCRIBER and SUPPLIER against tiered keyword dictionaries:

    confidence = min(100, round(top / (3 * high_weight) * 100))

A category is accepted only when confidence clears the accept threshold,
the lead over the runner-up clears the margin threshold, and top > 0.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from contactclass.config import get_config
from contactclass.exceptions import ConfigurationError
from contactclass.models import (
    Category,
    ClassificationMethod,
    ClassificationResult,
    Contact,
    FieldHint,
    Language,
)

TIERS = ("high", "medium", "low")

_REASON_PREFIX = {
    Language.EN: "Rules-based classification",
    Language.FR: "Classification par règles",
}


@dataclass
class CategoryScore:
    """Accumulated keyword score for one category."""

    category: Category
    score: int = 0
    signals: list[str] = field(default_factory=list)


class RulesEngine:
    """Deterministic keyword classifier loaded from keywords.yaml."""

    def __init__(
        self,
        keywords_path: Optional[Path] = None,
        accept_threshold: int | None = None,
        margin_threshold: int | None = None,
        review_below: int | None = None,
    ):
        """Initialize engine from YAML keyword dictionaries.

        Args:
            keywords_path: Path to keywords.yaml (defaults to bundled file)
            accept_threshold: Minimum confidence to accept (default from config)
            margin_threshold: Minimum lead over the runner-up (default from config)
            review_below: Accepted results below this confidence need review

        Raises:
            ConfigurationError: If YAML is invalid, missing or incomplete
        """
        if keywords_path is None:
            keywords_path = Path(__file__).parent.parent / "config" / "keywords.yaml"

        if accept_threshold is None or margin_threshold is None or review_below is None:
            rules_config = get_config().rules
            if accept_threshold is None:
                accept_threshold = rules_config.accept_threshold
            if margin_threshold is None:
                margin_threshold = rules_config.margin_threshold
            if review_below is None:
                review_below = rules_config.review_below

        self.accept_threshold = accept_threshold
        self.margin_threshold = margin_threshold
        self.review_below = review_below

        data = self._load(keywords_path)
        self._weights = self._parse_weights(data.get("weights"))
        self._keywords = self._parse_categories(data.get("categories"))

        heuristics = data.get("heuristics") or {}
        self._medical_terms = [t.lower() for t in heuristics.get("medical_domain_terms", [])]
        self._supplier_terms = [t.lower() for t in heuristics.get("supplier_domain_terms", [])]
        self._tax_id_min_length = int(heuristics.get("tax_id_min_length", 6))

    @staticmethod
    def _load(path: Path) -> dict[str, Any]:
        if not path.exists():
            raise ConfigurationError(f"Keyword file not found: {path}")

        try:
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}")

        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected mapping in {path}, got {type(data).__name__}")
        return data

    @staticmethod
    def _parse_weights(raw: Any) -> dict[str, int]:
        if not isinstance(raw, dict) or any(tier not in raw for tier in TIERS):
            raise ConfigurationError("Keyword weights must define high, medium and low")
        try:
            weights = {tier: int(raw[tier]) for tier in TIERS}
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid keyword weight: {e}")
        if weights["high"] <= 0:
            raise ConfigurationError("High keyword weight must be positive")
        return weights

    @staticmethod
    def _parse_categories(raw: Any) -> dict[Category, dict[str, list[str]]]:
        if not isinstance(raw, dict):
            raise ConfigurationError("No keyword categories defined in configuration")

        keywords: dict[Category, dict[str, list[str]]] = {}
        for category in Category.substantive():
            tiers = raw.get(category.value)
            if not isinstance(tiers, dict):
                raise ConfigurationError(f"Missing keyword dictionary for {category.value}")
            keywords[category] = {
                tier: [str(k).lower() for k in (tiers.get(tier) or [])] for tier in TIERS
            }
        return keywords

    @property
    def max_possible_score(self) -> int:
        """Score of three high-weight matches."""
        return self._weights["high"] * 3

    def score_categories(self, text: str) -> list[CategoryScore]:
        """Score every substantive category against free text.

        Args:
            text: Haystack (lower-cased internally)

        Returns:
            Category scores sorted descending; ties keep declaration order
        """
        haystack = text.lower()
        scores = []
        for category, tiers in self._keywords.items():
            result = CategoryScore(category=category)
            for tier in TIERS:
                for keyword in tiers[tier]:
                    if keyword in haystack:
                        result.score += self._weights[tier]
                        result.signals.append(keyword)
            scores.append(result)

        # sorted() is stable so equal scores stay in CLIENT, PRESCRIBER, SUPPLIER order
        return sorted(scores, key=lambda s: s.score, reverse=True)

    def confidence_for(self, score: int) -> int:
        return min(100, round(score / self.max_possible_score * 100))

    def classify(
        self, contact: Contact, language: Language = Language.EN
    ) -> ClassificationResult | None:
        """Classify a contact by keyword rules.

        Args:
            contact: Normalized contact
            language: Language of the reason text

        Returns:
            ClassificationResult when thresholds are met, else None
        """
        scores = self.score_categories(contact.searchable_text())
        top, second = scores[0], scores[1]

        margin = top.score - second.score
        confidence = self.confidence_for(top.score)

        if (
            top.score > 0
            and confidence >= self.accept_threshold
            and margin >= self.margin_threshold
        ):
            return ClassificationResult(
                category=top.category,
                confidence=confidence,
                reason=f"{_REASON_PREFIX[language]}: {', '.join(top.signals[:3])}",
                signals_used="; ".join(top.signals[:5]),
                needs_review=confidence < self.review_below,
                method=ClassificationMethod.RULES,
            )

        return None

    def apply_field_heuristics(self, contact: Contact) -> FieldHint | None:
        """Derive an advisory hint from structural fields.

        Checks the e-mail domain for medical or supplier terms, then the
        presence of a tax identifier.
        """
        domain = contact.email_domain or ""

        if domain and any(term in domain for term in self._medical_terms):
            return FieldHint(
                category=Category.PRESCRIBER,
                score=self._weights["high"],
                signals=["Medical domain detected"],
            )

        if domain and any(term in domain for term in self._supplier_terms):
            return FieldHint(
                category=Category.SUPPLIER,
                score=self._weights["high"],
                signals=["Supplier domain detected"],
            )

        if contact.tax_id and len(contact.tax_id.strip()) >= self._tax_id_min_length:
            return FieldHint(
                category=Category.SUPPLIER,
                score=self._weights["medium"],
                signals=["VAT number present"],
            )

        return None


_engine: RulesEngine | None = None


def get_rules_engine() -> RulesEngine:
    """Get or create the default RulesEngine (bundled keywords)."""
    global _engine
    if _engine is None:
        _engine = RulesEngine(get_config().keywords_path)
    return _engine
