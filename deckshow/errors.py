"""Exception hierarchy shared by the ingestion pipeline."""

from __future__ import annotations

from enum import Enum


class DeckshowError(RuntimeError):
    """Base class for all errors raised by Deckshow."""


class ValidationReason(str, Enum):
    NO_FILE = "no_file"
    WRONG_TYPE = "wrong_type"
    TOO_LARGE = "too_large"
    TOO_MANY_PAGES = "too_many_pages"
    PROJECT_EXISTS = "project_exists"


class SlideValidationError(DeckshowError):
    """Raised when an upload is rejected before conversion starts."""

    def __init__(self, reason: ValidationReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason


class SlideConversionError(DeckshowError):
    """Base class for slide conversion errors."""


class SlideConversionDependencyError(SlideConversionError):
    """Raised when the rasterization backend cannot be loaded."""


class SlideStorageError(DeckshowError):
    """Raised when slide files cannot be written to or read from storage."""


class SetCollisionError(DeckshowError):
    """Raised when a new slide set would reuse an existing set directory."""


__all__ = [
    "DeckshowError",
    "SetCollisionError",
    "SlideConversionDependencyError",
    "SlideConversionError",
    "SlideStorageError",
    "SlideValidationError",
    "ValidationReason",
]
