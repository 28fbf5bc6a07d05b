"""
Exceptions - Centralized exception hierarchy for epicsync.

All errors raised by the engine derive from EpicSyncError so callers can
catch the whole family in one place. Tracker errors are split into two
branches that drive the scheduler's behaviour:

- TransientError: network trouble, rate limits, 5xx. Retried with backoff.
- PermanentError: validation, permission, not-found. Never retried,
  reported per node.

AuthenticationError is neither: it aborts the whole run, because every
remaining call would fail the same way.

Hierarchy:

    EpicSyncError
    ├── ConfigError
    │   └── MissingConfigError
    ├── HierarchyError
    ├── MappingStoreError
    │   ├── MappingStoreCorruptError
    │   └── MappingStoreLockedError
    └── TrackerError
        ├── TransientError
        │   └── RateLimitError
        ├── PermanentError
        │   ├── ValidationError
        │   ├── AccessDeniedError
        │   └── ResourceNotFoundError
        └── AuthenticationError
"""

from __future__ import annotations

from pathlib import Path


__all__ = [
    "AccessDeniedError",
    "AuthenticationError",
    "ConfigError",
    "EpicSyncError",
    "HierarchyError",
    "MappingStoreCorruptError",
    "MappingStoreError",
    "MappingStoreLockedError",
    "MissingConfigError",
    "PermanentError",
    "RateLimitError",
    "ResourceNotFoundError",
    "TrackerError",
    "TransientError",
    "ValidationError",
]


# =============================================================================
# Base
# =============================================================================


class EpicSyncError(Exception):
    """Base class for all epicsync errors."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        if self.cause is not None:
            return f"{self.message} (caused by {type(self.cause).__name__}: {self.cause})"
        return self.message


# =============================================================================
# Configuration
# =============================================================================


class ConfigError(EpicSyncError):
    """Configuration is invalid or inconsistent."""


class MissingConfigError(ConfigError):
    """A required configuration value is absent."""

    def __init__(self, message: str, key: str | None = None, cause: Exception | None = None):
        super().__init__(message, cause)
        self.key = key


# =============================================================================
# Local hierarchy
# =============================================================================


class HierarchyError(EpicSyncError):
    """The local Epic/Story/Task tree cannot be loaded or is malformed."""

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause)
        self.path = str(path) if path is not None else None


# =============================================================================
# Mapping store
# =============================================================================


class MappingStoreError(EpicSyncError):
    """Base class for mapping store failures. Always fatal for a run."""

    def __init__(
        self,
        message: str,
        path: Path | str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause)
        self.path = str(path) if path is not None else None


class MappingStoreCorruptError(MappingStoreError):
    """The mapping store file exists but cannot be trusted."""


class MappingStoreLockedError(MappingStoreError):
    """Another process holds the mapping store lock."""


# =============================================================================
# Tracker errors
# =============================================================================


class TrackerError(EpicSyncError):
    """Base class for errors reported by an item tracker."""

    def __init__(
        self,
        message: str,
        item_id: str | None = None,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause)
        self.item_id = item_id
        self.status_code = status_code


class TransientError(TrackerError):
    """A failure that may succeed on retry (5xx, timeouts, connection resets)."""


class RateLimitError(TransientError):
    """The tracker rejected the call with HTTP 429."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        item_id: str | None = None,
        status_code: int | None = 429,
        cause: Exception | None = None,
    ):
        super().__init__(message, item_id=item_id, status_code=status_code, cause=cause)
        self.retry_after = retry_after


class PermanentError(TrackerError):
    """A failure that will not change on retry."""


class ValidationError(PermanentError):
    """The tracker rejected the payload (HTTP 400/422)."""


class AccessDeniedError(PermanentError):
    """The credential lacks permission for the operation (HTTP 403)."""


class ResourceNotFoundError(PermanentError):
    """The referenced remote item or project does not exist (HTTP 404)."""


class AuthenticationError(TrackerError):
    """The credential was rejected (HTTP 401). Aborts the run."""
