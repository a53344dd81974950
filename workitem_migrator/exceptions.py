"""Custom exception hierarchy for the work item migration tool."""

from __future__ import annotations

from typing import Any


class MigratorError(Exception):
    """Base exception for all migration-related errors."""


class ConfigError(MigratorError):
    """Raised when configuration is invalid or missing."""


class ValidationError(MigratorError):
    """Raised when the source query or the target project fails validation."""


class RemoteServiceError(MigratorError):
    """Raised when the remote work item service answers with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_code: str | None = None,
        body: Any = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code
        self.body = body


class PermanentFaultError(MigratorError):
    """Raised (or returned by a failure hook) to stop retrying an operation."""


class RetryExhaustedError(MigratorError):
    """Raised when a retry loop ends without having captured any error."""


class ReconciliationError(MigratorError):
    """Raised when a batch response cannot be mapped back to its requests."""


class MigrationAbortedError(MigratorError):
    """Raised when the migration run is aborted."""
