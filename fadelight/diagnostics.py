"""Diagnostics produced while validating and evaluating fades.

Two severities exist.  A *fatal* error aborts an evaluation and is raised as
`FadeError`; at most one is reported per evaluation.  *Warnings* are plain
`Issue` values returned next to the validated result and collected by the
caller into a `Report`.  The first warning sets the short status text unless
a fatal error replaces it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional, Tuple

from .const import STATUS_MAX_LENGTH


class Severity(Enum):
    """Severity of a status report."""
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ErrorKind(Enum):
    """Reasons an evaluation can fail."""
    MISSING_FIELD = "missing_field"
    NOT_A_NUMBER = "not_a_number"
    OUT_OF_RANGE = "out_of_range"
    MISSING_OR_NOT_ARRAY = "missing_or_not_array"
    INSUFFICIENT_ENTRIES = "insufficient_entries"
    INVALID_WINDOW = "invalid_window"


@dataclass(frozen=True)
class Issue:
    """A non-fatal problem: a full message plus a short status text."""
    message: str
    status: str


class FadeError(Exception):
    """Fatal validation or evaluation error.

    Carries the warnings gathered before the failure so the caller can still
    report them.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        status: str,
        warnings: Iterable[Issue] = (),
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.status = status
        self.warnings: Tuple[Issue, ...] = tuple(warnings)


@dataclass(frozen=True)
class Status:
    """What a status sink displays. ``text`` None clears the status."""
    severity: Severity
    text: Optional[str] = None

    @classmethod
    def clear(cls) -> "Status":
        return cls(Severity.INFO, None)


def shorten(text: str, limit: int = STATUS_MAX_LENGTH) -> str:
    """Trim *text* to fit a status badge."""
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


@dataclass(frozen=True)
class Report:
    """Outcome of one evaluation: accumulated warnings and an optional error."""

    warnings: Tuple[Issue, ...] = field(default_factory=tuple)
    error: Optional[FadeError] = None

    def extend(self, issues: Iterable[Issue]) -> "Report":
        return Report(self.warnings + tuple(issues), self.error)

    def fail(self, error: FadeError) -> "Report":
        """Record a fatal error, keeping the warnings it carries."""
        return Report(self.warnings + error.warnings, error)

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def severity(self) -> Severity:
        if self.error is not None:
            return Severity.ERROR
        if self.warnings:
            return Severity.WARNING
        return Severity.INFO

    @property
    def status(self) -> Status:
        if self.error is not None:
            return Status(Severity.ERROR, shorten(self.error.status))
        if self.warnings:
            return Status(Severity.WARNING, shorten(self.warnings[0].status))
        return Status.clear()

    def as_dict(self) -> dict:
        """JSON friendly rendering for the web API."""
        status = self.status
        return {
            "severity": status.severity.value,
            "status": status.text,
            "error": self.error.message if self.error else None,
            "error_kind": self.error.kind.value if self.error else None,
            "warnings": [issue.message for issue in self.warnings],
        }
