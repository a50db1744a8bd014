"""Job pipeline for contactclass.

Rules -> enrichment -> AI classification, advanced one short step at a time
by the orchestrator and resumed purely from persisted job and row state.
"""
