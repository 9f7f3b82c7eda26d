"""
Tests for the errors module.

This test module validates:
- UpdateError base class functionality
- Error subclasses and their error codes
- Error serialization (to_dict)
"""

from __future__ import annotations

import pytest

from cli_selfupdate.errors import (
    ActivationError,
    ExtractionError,
    FilesystemConflictError,
    InvalidArgumentError,
    TransportError,
    UpdateError,
    VersionNotFoundError,
)

# =============================================================================
# Tests for UpdateError Base Class
# =============================================================================


class TestUpdateError:
    """Tests for UpdateError base class."""

    def test_init_with_all_args(self) -> None:
        """Test UpdateError initialization with all arguments."""
        error = UpdateError(
            error_code="test_error",
            message="Test error message",
            details={"key": "value"},
        )

        assert error.error_code == "test_error"
        assert error.message == "Test error message"
        assert error.details == {"key": "value"}

    def test_init_with_minimal_args(self) -> None:
        """Test UpdateError initialization with minimal arguments."""
        error = UpdateError(error_code="test_error", message="Test message")

        assert error.details == {}

    def test_str_representation(self) -> None:
        """Test UpdateError string representation."""
        error = UpdateError(error_code="test_error", message="Test error message")
        assert str(error) == "Test error message"

    def test_repr_representation(self) -> None:
        """Test UpdateError repr representation."""
        error = UpdateError(
            error_code="test_error",
            message="Test message",
            details={"version": "3.2.0"},
        )
        repr_str = repr(error)

        assert "UpdateError" in repr_str
        assert "test_error" in repr_str
        assert "3.2.0" in repr_str

    def test_to_dict(self) -> None:
        """Test UpdateError to_dict serialization."""
        error = UpdateError(
            error_code="test_error",
            message="Test message",
            details={"key": "value"},
        )

        assert error.to_dict() == {
            "error_code": "test_error",
            "message": "Test message",
            "details": {"key": "value"},
        }


# =============================================================================
# Tests for Error Subclasses
# =============================================================================


class TestErrorSubclasses:
    """Tests for the UpdateError subclasses."""

    @pytest.mark.parametrize(
        ("error_class", "error_code"),
        [
            (InvalidArgumentError, "invalid_argument"),
            (ExtractionError, "extraction_failed"),
            (TransportError, "transport_failed"),
            (FilesystemConflictError, "filesystem_conflict"),
            (ActivationError, "activation_failed"),
        ],
    )
    def test_error_codes(self, error_class: type[UpdateError], error_code: str) -> None:
        """Test that each subclass carries its error code."""
        error = error_class("Something failed", details={"path": "/tmp/x"})

        assert isinstance(error, UpdateError)
        assert error.error_code == error_code
        assert error.message == "Something failed"
        assert error.details == {"path": "/tmp/x"}

    def test_can_be_caught_as_update_error(self) -> None:
        """Test that subclasses can be caught through the base class."""
        with pytest.raises(UpdateError):
            raise ExtractionError("Unsupported archive entry type fifo: 1.0.0/pipe")


class TestVersionNotFoundError:
    """Tests for VersionNotFoundError."""

    def test_message_lists_available_versions(self) -> None:
        """Test that the message names the version and every indexed one."""
        error = VersionNotFoundError("9.9.9", ["1.0.0", "2.0.0"])

        assert error.error_code == "version_not_found"
        assert str(error) == "9.9.9 not found in index:\n1.0.0, 2.0.0"

    def test_attributes_and_details(self) -> None:
        """Test that the version and the index are exposed."""
        error = VersionNotFoundError("9.9.9", ["1.0.0"])

        assert error.version == "9.9.9"
        assert error.available == ["1.0.0"]
        assert error.details == {"version": "9.9.9", "available": ["1.0.0"]}

    def test_empty_index(self) -> None:
        """Test the message when the index lists nothing."""
        error = VersionNotFoundError("1.0.0", [])

        assert error.message == "1.0.0 not found in index:\n"
