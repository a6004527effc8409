"""
Exception hierarchy for Strata.

Provides a standardized exception hierarchy for consistent error handling
across the analysis pipeline. All exceptions inherit from StrataException.
"""

from typing import Optional


class StrataException(Exception):
    """Base exception for all Strata errors."""
    pass


class ValidationException(StrataException):
    """Input validation failed."""

    def __init__(self, message: str, field: str = None):
        """
        Initialize validation exception.

        Args:
            message: Validation error message
            field: Field that failed validation (optional)
        """
        self.field = field
        self.message = message
        if field:
            super().__init__(f"Validation failed for {field}: {message}")
        else:
            super().__init__(message)


class ImageReferenceError(ValidationException):
    """Image reference string could not be parsed."""

    def __init__(self, message: str):
        super().__init__(message)


class EmptyReferenceError(ImageReferenceError):
    """Image reference is the empty string."""

    def __init__(self):
        super().__init__("image name is empty")


class UppercaseRepositoryError(ImageReferenceError):
    """Reference is only invalid because the repository has uppercase letters."""

    def __init__(self):
        super().__init__("image repository contains uppercase letter")


class InvalidFormatError(ImageReferenceError):
    """Reference does not match the reference grammar."""

    def __init__(self, message: str = "invalid image reference format"):
        super().__init__(message)


class InvalidDigestError(ValidationException):
    """Digest string is malformed or uses an unsupported algorithm."""

    def __init__(self, message: str):
        super().__init__(message)


class ScanException(StrataException):
    """Scan operation failed."""

    def __init__(self, image: str, reason: str):
        """
        Initialize scan exception.

        Args:
            image: Image reference that failed to scan
            reason: Reason for failure
        """
        self.image = image
        self.reason = reason
        super().__init__(f"Failed to scan {image}: {reason}")


class ArchiveReadError(StrataException):
    """Image archive could not be read."""

    def __init__(self, archive_path: str, reason: str):
        self.archive_path = archive_path
        self.reason = reason
        super().__init__(f"Failed to read image archive {archive_path}: {reason}")


class DockerCommandError(StrataException):
    """
    Container runtime command exited with an error.

    Carries the captured output so callers can inspect stderr the same way
    they would for a raw subprocess failure.
    """

    def __init__(
        self,
        command: list[str],
        stderr: str = "",
        stdout: str = "",
        returncode: Optional[int] = None,
        message: Optional[str] = None,
    ):
        self.command = command
        self.stderr = stderr or ""
        self.stdout = stdout or ""
        self.returncode = returncode
        if message is None:
            summary = self.stderr.strip() or f"exit code {returncode}"
            message = f"{' '.join(command[:2])} failed: {summary}"
        super().__init__(message)


class ImageNotFoundError(DockerCommandError):
    """Runtime reported that the target image does not exist."""

    def __init__(self, image: str, command: list[str] = None, stderr: str = ""):
        self.image = image
        super().__init__(
            command or [],
            stderr=stderr,
            message=f"No such image: {image}",
        )


class AnalysisException(StrataException):
    """A group of analyzers failed; partial results are discarded."""
    pass


class OSReleaseError(StrataException):
    """OS release files were present but none could be parsed."""
    pass


class ConfigurationException(StrataException):
    """Configuration is invalid or missing."""
    pass


__all__ = [
    "StrataException",
    "ValidationException",
    "ImageReferenceError",
    "EmptyReferenceError",
    "UppercaseRepositoryError",
    "InvalidFormatError",
    "InvalidDigestError",
    "ScanException",
    "ArchiveReadError",
    "DockerCommandError",
    "ImageNotFoundError",
    "AnalysisException",
    "OSReleaseError",
    "ConfigurationException",
]
