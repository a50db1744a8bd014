"""Public-web enrichment of contacts.

Search and places lookups are paid and counted against the job budget.
"""
