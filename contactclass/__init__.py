"""contactclass - tiered contact classification (rules, enrichment, AI)."""

__version__ = "0.1.0"
