"""
Error types for the CLI self-update engine.

This module defines the UpdateError base class and the subclasses for each
failure category of an update run. Errors carry a stable error code, a
human-readable message and optional structured details (e.g. the list of
versions available in the index).
"""

from __future__ import annotations

from typing import Any


class UpdateError(Exception):
    """
    Base exception class for self-update errors.

    Attributes:
        error_code: Internal error code string (e.g., "extraction_failed",
            "version_not_found", "transport_failed", "filesystem_conflict").
        message: Human-readable error message.
        details: Optional structured details (e.g., paths, versions).

    Example:
        >>> raise UpdateError(
        ...     error_code="version_not_found",
        ...     message="9.9.9 not found in index",
        ...     details={"version": "9.9.9"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an UpdateError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(UpdateError):
    """Error raised for invalid input or an invalid state transition."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class ExtractionError(UpdateError):
    """
    Error raised when an archive cannot be installed.

    Covers unsupported tar entry types, broken archive streams, a missing
    top-level directory and a failed final rename.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ExtractionError."""
        super().__init__(
            error_code="extraction_failed", message=message, details=details
        )


class VersionNotFoundError(UpdateError):
    """
    Error raised when a requested version is absent from the version index.

    The message names the requested version and lists every indexed version.
    """

    def __init__(self, version: str, available: list[str]) -> None:
        """Initialize a VersionNotFoundError."""
        super().__init__(
            error_code="version_not_found",
            message=f"{version} not found in index:\n{', '.join(available)}",
            details={"version": version, "available": available},
        )
        self.version = version
        self.available = available


class TransportError(UpdateError):
    """Error raised when a registry or download endpoint cannot be reached."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a TransportError."""
        super().__init__(
            error_code="transport_failed", message=message, details=details
        )


class FilesystemConflictError(UpdateError):
    """Error raised when the client root exists but cannot be used as a directory."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FilesystemConflictError."""
        super().__init__(
            error_code="filesystem_conflict", message=message, details=details
        )


class ActivationError(UpdateError):
    """
    Error raised when an installed version cannot be made the active one.

    Covers an unreadable manifest in the version directory and a launcher
    shim or ``current`` pointer that cannot be written.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an ActivationError."""
        super().__init__(
            error_code="activation_failed", message=message, details=details
        )
