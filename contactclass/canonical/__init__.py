"""Contact normalization and deterministic cache keys."""
