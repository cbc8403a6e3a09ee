"""Immo Harvester — Exception Hierarchy.

Only configuration mistakes and ownership violations surface as
exceptions. Retrieval and parsing problems are logged and degrade to
"no data" inside the providers.
"""

from __future__ import annotations


class HarvesterError(Exception):
    """Base class for all harvester errors."""


class ConfigurationError(HarvesterError):
    """Raised at startup or registration time for invalid configuration."""


class FieldSpecError(ConfigurationError):
    """Raised when a declarative field spec cannot be compiled."""

    def __init__(self, field_name: str, reason: str) -> None:
        self.field_name = field_name
        self.reason = reason
        super().__init__(f"Invalid field spec '{field_name}': {reason}")


class UnknownProviderError(ConfigurationError):
    """Raised when a provider id is not part of the compiled-in registry."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Unknown provider '{provider_id}'")


class JobOwnershipError(HarvesterError):
    """Raised when a user mutates a job that is neither theirs nor they are admin."""

    def __init__(self, job_id: str, user_id: str | None) -> None:
        self.job_id = job_id
        self.user_id = user_id
        super().__init__(
            f"User '{user_id}' is not allowed to change job '{job_id}'"
        )
