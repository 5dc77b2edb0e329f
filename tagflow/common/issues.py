"""Shared issue representation for pipeline operations."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Literal, Optional

IssueSeverity = Literal["error", "warning", "info"]


@dataclass(slots=True)
class PipelineIssue:
    """Lightweight issue representation for build, validation, and promotion steps."""

    code: str
    message: str
    severity: IssueSeverity = "error"
    subject: Optional[str] = None
    details: Optional[str] = None

    def is_error(self) -> bool:
        """Return True when the issue is considered an error."""
        return self.severity == "error"

    def __str__(self) -> str:
        prefix = f"[{self.code}]"
        if self.subject:
            prefix = f"{prefix} {self.subject}:"
        return f"{prefix} {self.message}"


def has_errors(issues: Iterable[PipelineIssue]) -> bool:
    return any(issue.is_error() for issue in issues)
