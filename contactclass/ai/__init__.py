"""AI batch classification with escalation and anti-fallback."""
