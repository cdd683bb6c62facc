"""Error hierarchy shared by the brief pipeline, manifest validator and job queue."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Literal, Optional

__all__ = [
    "DreamcutError",
    "ValidationIssue",
    "ValidationError",
    "AnalyzerFailure",
    "FanoutCancelled",
    "AssemblyError",
    "JobExecutionError",
    "JobTransientError",
    "JobPermanentError",
    "ClaimConflict",
    "InvalidTransition",
    "UnknownJobError",
    "UnknownBriefError",
    "issues_from_pydantic",
]


class DreamcutError(RuntimeError):
    """Base error for pipeline failures."""


@dataclass(frozen=True)
class ValidationIssue:
    """Single field-qualified validation problem."""

    field: str
    message: str
    severity: Literal["error", "warning"] = "error"

    def as_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "message": self.message, "severity": self.severity}

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationError(DreamcutError):
    """Raised when caller input is malformed. Always carries every issue found."""

    def __init__(self, issues: Iterable[ValidationIssue], message: Optional[str] = None) -> None:
        self.issues: List[ValidationIssue] = list(issues)
        if message is None:
            message = "; ".join(str(issue) for issue in self.issues) or "validation failed"
        super().__init__(message)


class AnalyzerFailure(DreamcutError):
    """A remote analyzer call failed (timeout, non-2xx, malformed payload)."""

    def __init__(self, message: str, *, analyzer: Optional[str] = None, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.analyzer = analyzer
        self.status_code = status_code


class FanoutCancelled(DreamcutError):
    """The analysis fanout was superseded or cancelled; its results must be discarded."""


class AssemblyError(DreamcutError):
    """No brief can be produced from the supplied request/analysis."""


class JobExecutionError(DreamcutError):
    """Base error raised by job handlers."""

    retryable: bool = True


class JobTransientError(JobExecutionError):
    """Recoverable job failure; retried until max_attempts is reached."""

    retryable = True


class JobPermanentError(JobExecutionError):
    """Non-retryable job failure; the job fails terminally on first occurrence."""

    retryable = False


class ClaimConflict(DreamcutError):
    """A job was claimed by two workers. Indicates a store bug."""


class InvalidTransition(DreamcutError):
    """A job status change that the state machine does not allow."""


class UnknownJobError(KeyError):
    """Raised when a job id is not present in the store."""


class UnknownBriefError(KeyError):
    """Raised when no job in the store belongs to a brief id."""


def issues_from_pydantic(exc: Any, prefix: str = "") -> List[ValidationIssue]:
    """Convert a pydantic ValidationError into dotted, field-qualified issues."""

    issues: List[ValidationIssue] = []
    for err in exc.errors():
        loc = ".".join(str(part) for part in err.get("loc", ()))
        if prefix:
            loc = f"{prefix}.{loc}" if loc else prefix
        issues.append(ValidationIssue(loc or "<root>", err.get("msg", "invalid value")))
    return issues
