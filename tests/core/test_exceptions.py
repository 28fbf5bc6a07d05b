"""Tests for the epicsync exception hierarchy.

Verifies that:
- All exceptions have the correct inheritance
- Exceptions properly chain causes
- Attributes are correctly stored
"""

import pytest

from epicsync.core.exceptions import (
    AccessDeniedError,
    AuthenticationError,
    ConfigError,
    EpicSyncError,
    HierarchyError,
    MappingStoreCorruptError,
    MappingStoreError,
    MappingStoreLockedError,
    MissingConfigError,
    PermanentError,
    RateLimitError,
    ResourceNotFoundError,
    TrackerError,
    TransientError,
    ValidationError,
)


class TestHierarchy:
    """Inheritance of the exception classes."""

    @pytest.mark.parametrize(
        "exc_class",
        [
            ConfigError,
            MissingConfigError,
            HierarchyError,
            MappingStoreError,
            MappingStoreCorruptError,
            MappingStoreLockedError,
            TrackerError,
            TransientError,
            RateLimitError,
            PermanentError,
            ValidationError,
            AccessDeniedError,
            ResourceNotFoundError,
            AuthenticationError,
        ],
    )
    def test_all_derive_from_base(self, exc_class):
        assert issubclass(exc_class, EpicSyncError)

    def test_rate_limit_is_transient(self):
        assert issubclass(RateLimitError, TransientError)

    @pytest.mark.parametrize(
        "exc_class", [ValidationError, AccessDeniedError, ResourceNotFoundError]
    )
    def test_client_errors_are_permanent(self, exc_class):
        assert issubclass(exc_class, PermanentError)

    def test_authentication_is_neither_transient_nor_permanent(self):
        """Authentication failures abort the run instead of being retried or reported."""
        assert issubclass(AuthenticationError, TrackerError)
        assert not issubclass(AuthenticationError, TransientError)
        assert not issubclass(AuthenticationError, PermanentError)

    def test_mapping_store_errors(self):
        assert issubclass(MappingStoreCorruptError, MappingStoreError)
        assert issubclass(MappingStoreLockedError, MappingStoreError)


class TestAttributes:
    """Stored attributes and string forms."""

    def test_message_without_cause(self):
        error = EpicSyncError("boom")
        assert str(error) == "boom"
        assert error.message == "boom"
        assert error.cause is None

    def test_message_with_cause(self):
        cause = ValueError("bad value")
        error = EpicSyncError("wrapped", cause=cause)
        assert error.cause is cause
        assert str(error) == "wrapped (caused by ValueError: bad value)"

    def test_tracker_error_fields(self):
        error = TrackerError("failed", item_id="auth/1", status_code=422)
        assert error.item_id == "auth/1"
        assert error.status_code == 422

    def test_rate_limit_defaults(self):
        error = RateLimitError("slow down", retry_after=12.0)
        assert error.retry_after == 12.0
        assert error.status_code == 429

    def test_missing_config_key(self):
        error = MissingConfigError("no token", key="github")
        assert error.key == "github"
        assert isinstance(error, ConfigError)

    def test_path_is_stringified(self, tmp_path):
        error = MappingStoreCorruptError("corrupt", path=tmp_path / "m.json")
        assert error.path == str(tmp_path / "m.json")

        assert HierarchyError("bad").path is None

    def test_can_be_caught_as_family(self):
        with pytest.raises(EpicSyncError):
            raise ResourceNotFoundError("gone", item_id="42", status_code=404)
