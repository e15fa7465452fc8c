"""Domain errors raised by the audit pipeline services."""

from __future__ import annotations

from typing import Dict, Optional


class AuditError(Exception):
    """Base class for errors the audit services surface to callers."""


class ValidationError(AuditError):
    """Malformed input; raised before any job record is created."""


class QuotaExceededError(AuditError):
    """Requester is over the monthly audit allowance of their plan."""


class AuthorizationError(AuditError):
    """Requester may not read or modify the job."""


class NotFoundError(AuditError):
    """Unknown job id."""


class InvalidTransitionError(RuntimeError):
    """A status change that the job lifecycle does not allow."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Illegal audit status transition {current!r} -> {target!r}")
        self.current = current
        self.target = target


class AnalyzerFailure(RuntimeError):
    """One analyzer failed or timed out; recorded per category, never surfaced alone."""

    def __init__(self, category: str, message: str) -> None:
        super().__init__(f"{category}: {message}")
        self.category = category
        self.message = message


class JobFailure(RuntimeError):
    """Every analyzer failed for a job."""

    def __init__(self, failures: Dict[str, str], detail: Optional[str] = None) -> None:
        self.failures = dict(failures)
        summary = "; ".join(f"{key}: {value}" for key, value in self.failures.items())
        message = detail or "All analyses failed"
        super().__init__(f"{message} ({summary})" if summary else message)


class DispatchUnavailableError(AuditError):
    """The analysis phase could not be handed to the worker queue."""

    def __init__(self, message: str, job_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.job_id = job_id
