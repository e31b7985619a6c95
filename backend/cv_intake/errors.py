"""
Exceptions raised across the intake pipeline.

Intake-time errors (validation, missing configuration) are returned to the
caller synchronously. Everything raised by the background pipeline only
becomes visible through the polled upload record.
"""
from typing import Optional


class CVIntakeError(Exception):
    """Base exception for the CV intake service."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(CVIntakeError):
    """Bad or missing file/field in an upload request."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


class UnsupportedFormat(CVIntakeError):
    """Declared MIME type has no text decoder."""

    def __init__(self, mime_type: Optional[str]):
        super().__init__(f"Unsupported file format: {mime_type}")
        self.mime_type = mime_type


class ExtractionFailed(CVIntakeError):
    """File could not be decoded into text (corrupt or empty)."""


class ExtractionServiceError(CVIntakeError):
    """The hosted LLM call failed (network, auth, quota)."""


class StorageError(CVIntakeError):
    """Object storage upload failed."""


class SheetError(CVIntakeError):
    """Spreadsheet append failed."""


class EmailError(CVIntakeError):
    """Confirmation email could not be sent."""


class NotFound(CVIntakeError):
    """Upload record is unknown or expired."""


class StatusStoreError(CVIntakeError):
    """Key-value status store request failed."""


class ConfigurationError(CVIntakeError):
    """A setting required for basic operation is missing."""
