"""Exception hierarchy for contactclass.

Only configuration and job-identity errors are fatal for a job. Provider
errors are caught at the stage boundary per item or per batch.
"""

from __future__ import annotations


class ContactClassError(Exception):
    """Base class for contactclass errors."""


class ConfigurationError(ContactClassError):
    """Configuration is invalid or a required credential is missing."""


class InvalidJobIdError(ContactClassError):
    """Job identifier is not a valid UUID."""


class JobNotFoundError(ContactClassError):
    """No job exists for the given identifier."""


class InvalidTransitionError(ContactClassError):
    """Requested job status change violates the pipeline order."""


class ProviderError(ContactClassError):
    """An external provider call failed (transport, HTTP status, payload)."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderTimeoutError(ProviderError):
    """An external provider call exceeded its timeout."""
