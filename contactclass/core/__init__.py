"""Shared infrastructure: logging and job queue."""
