"""
Exit Codes - Process exit codes of the epicsync command.
"""

from enum import IntEnum

from epicsync.core.exceptions import (
    AuthenticationError,
    ConfigError,
    MappingStoreError,
)


class ExitCode(IntEnum):
    """
    Exit codes returned by the CLI.

    Attributes:
        SUCCESS: Every node synced, no unresolved conflict.
        ERROR: Unexpected error, or the local hierarchy is invalid.
        CONFIG_ERROR: Missing or invalid configuration.
        PARTIAL_FAILURE: Some nodes failed or were skipped.
        CONFLICTS_UNRESOLVED: Both-changed nodes left for manual resolution.
        AUTH_ERROR: The tracker rejected the credentials.
        MAPPING_STORE_ERROR: The mapping store is corrupt, locked or unwritable.
        CONNECTION_ERROR: The tracker could not be reached before the sync.
        CANCELLED: Interrupted (Ctrl-C or --timeout).
    """

    SUCCESS = 0
    ERROR = 1
    CONFIG_ERROR = 2
    PARTIAL_FAILURE = 3
    CONFLICTS_UNRESOLVED = 4
    AUTH_ERROR = 5
    MAPPING_STORE_ERROR = 6
    CONNECTION_ERROR = 7
    CANCELLED = 130

    @classmethod
    def from_exception(cls, exc: BaseException) -> "ExitCode":
        """Map an exception that aborted a command to an exit code."""
        if isinstance(exc, KeyboardInterrupt):
            return cls.CANCELLED
        if isinstance(exc, ConfigError):
            return cls.CONFIG_ERROR
        if isinstance(exc, AuthenticationError):
            return cls.AUTH_ERROR
        if isinstance(exc, MappingStoreError):
            return cls.MAPPING_STORE_ERROR
        return cls.ERROR
