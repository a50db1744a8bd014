"""Keyword rules classification."""

from contactclass.classification.rules_engine import RulesEngine, get_rules_engine

__all__ = ["RulesEngine", "get_rules_engine"]
