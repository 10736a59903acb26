"""
Error taxonomy for harvest runs.

Every error raised by the orchestration engine derives from HarvestError.
The retry layer and the delivery layers branch on these classes, so the
class of an error decides whether it is retried, surfaced, or swallowed
into a per-record log entry.
"""

from __future__ import annotations

from typing import Any


class HarvestError(Exception):
    """Base exception for harvest errors."""

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.cause = cause


class SubmissionValidationError(HarvestError):
    """Malformed admission input (missing or empty credential fields)."""

    def __init__(
        self,
        message: str,
        details: list[dict[str, Any]] | None = None,
    ):
        super().__init__(message)
        self.details = details or []


class AuthenticationError(HarvestError):
    """Credential rejected or login navigation timed out.

    Fatal: never retried by RetryExecutor.
    """
    pass


class TransientStepError(HarvestError):
    """A single navigation or selection step failed (slow render, stale element)."""

    def __init__(
        self,
        message: str,
        step: str | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message, cause=cause)
        self.step = step


class ScrapeCancelledError(HarvestError):
    """Cooperative cancellation was observed at a phase boundary."""

    def __init__(self, message: str = "Processo cancelado pelo usuário."):
        super().__init__(message)


class PersistenceError(HarvestError):
    """Storing an extracted record failed."""
    pass


class RetryExhaustedError(HarvestError):
    """All run attempts failed."""

    def __init__(self, attempts: int, last_error: BaseException | None = None):
        detail = f": {last_error}" if last_error else ""
        super().__init__(
            f"Run failed after {attempts} attempts{detail}",
            cause=last_error if isinstance(last_error, Exception) else None,
        )
        self.attempts = attempts
        self.last_error = last_error


class CredentialError(HarvestError):
    """Stored credential could not be decrypted."""
    pass
