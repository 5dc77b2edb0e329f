"""Exception hierarchy for failures that abort an operation outright."""
from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for every error raised by tagflow."""


class ConfigurationError(PipelineError, ValueError):
    """Missing or malformed input detected before any side effect."""


class BuilderError(PipelineError):
    """The isolated buildx builder could not be created or selected."""


class InvalidTransitionError(PipelineError):
    """A promotion state machine was asked to make an illegal transition."""


class RegistryApiError(PipelineError):
    """The registry HTTP API failed or could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.url = url

    @property
    def retryable(self) -> bool:
        # Transport failures carry no status; 5xx and 429 are worth another attempt.
        return self.status_code is None or self.status_code >= 500 or self.status_code == 429
