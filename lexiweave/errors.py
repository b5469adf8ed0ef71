"""Exception hierarchy and error bookkeeping for Lexiweave."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Sequence


class ErrorCategory(Enum):
    """Groups failures so repeated errors of one kind can be detected."""

    ARGUMENT = "argument"
    FILE_IO = "file_io"
    FORMAT = "format"
    TRANSLATION = "translation"
    OTHER = "other"


class LexiweaveError(Exception):
    """Base exception for all custom errors."""

    category = ErrorCategory.OTHER


class AbortRequested(LexiweaveError):
    """The user chose to stop the run."""


class NonInteractiveAbort(LexiweaveError):
    """Error thresholds were reached with nobody to ask."""


class UnsupportedFileTypeError(LexiweaveError):
    category = ErrorCategory.FORMAT


class OverwriteRefusedError(LexiweaveError):
    """Writing the report would clobber an existing file."""

    category = ErrorCategory.FILE_IO


class SegmenterConfigurationError(LexiweaveError, ValueError):
    """Segment length bounds are inconsistent."""

    category = ErrorCategory.ARGUMENT


class TranslationProviderConfigurationError(LexiweaveError):
    """Provider selection or credentials are invalid."""

    category = ErrorCategory.ARGUMENT


class TranslationProviderError(LexiweaveError):
    """A model request failed.

    ``retryable`` is ``None`` when the provider cannot tell; callers then
    decide from ``status_code`` and the message. ``attempts`` lists the
    provider configurations tried before giving up.
    """

    category = ErrorCategory.TRANSLATION

    def __init__(
        self,
        message: str,
        *,
        status_code: Optional[int] = None,
        retryable: Optional[bool] = None,
        attempts: Sequence[Any] = (),
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
        self.attempts = list(attempts)


@dataclass
class ErrorRecord:
    category: ErrorCategory
    message: str
    segment_id: Optional[str] = None


@dataclass
class ErrorTracker:
    """Counts errors overall and in runs of the same category."""

    consecutive_limit: int = 3
    total_limit: int = 10
    last_category: Optional[ErrorCategory] = None
    consecutive: int = 0
    total: int = 0

    def register(self, category: ErrorCategory) -> bool:
        """Count one error and report whether a threshold is now reached."""

        if category is self.last_category:
            self.consecutive += 1
        else:
            self.last_category = category
            self.consecutive = 1
        self.total += 1
        return self.threshold_reached

    @property
    def threshold_reached(self) -> bool:
        return (
            self.consecutive >= self.consecutive_limit
            or self.total >= self.total_limit
        )

    def describe_threshold(self) -> str:
        if self.consecutive >= self.consecutive_limit:
            return f"The same kind of error occurred {self.consecutive} times in a row."
        return f"{self.total} errors have occurred during this run."

    def reset_consecutive(self) -> None:
        self.consecutive = 0
        self.last_category = None
