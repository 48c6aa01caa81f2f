"""Exception hierarchy shared by the pipeline and the HTTP layer."""
from typing import Optional


class ConverterError(Exception):
    """Base class for all pipeline errors."""


class InputError(ConverterError):
    """Request-level problem detected before any conversion starts."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        super().__init__(message)
        self.errors = errors or [message]


class ContentValidationError(InputError):
    """Uploaded bytes do not match the claimed media category."""


class ConversionError(ConverterError):
    """A single file could not be converted."""


class CapabilityError(ConversionError):
    """An external tool is missing or failed as a tool, not because of the input."""


class ArchiveError(ConverterError):
    pass


class ArtifactNotFound(ConverterError):
    """Named artifact is not (or no longer) in the store."""
