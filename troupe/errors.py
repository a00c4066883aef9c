"""Centralized exception hierarchy for Troupe.

This module defines all custom exceptions used throughout the Troupe
package, organized in a hierarchy for easy handling and specificity.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from troupe.dispatch.job import GenerationJob, JobResponse


class TroupeError(Exception):
    """Base exception for all Troupe errors.

    Attributes:
        message: Human-readable error message.
        code: Optional error code for programmatic handling.
        details: Optional dictionary with additional error context.
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "code": self.code,
            "details": self.details,
        }


# =============================================================================
# Configuration Errors
# =============================================================================

class ConfigurationError(TroupeError):
    """Raised when there's a configuration problem."""
    pass


class InvalidConfigError(ConfigurationError):
    """Raised when configuration values are invalid."""

    def __init__(self, field: str, value: Any, reason: str):
        super().__init__(
            message=f"Invalid configuration for '{field}': {reason}",
            code="INVALID_CONFIG",
            details={"field": field, "value": str(value)[:100], "reason": reason},
        )


class NoParticipantsError(ConfigurationError):
    """Raised when a speaker has to be chosen but nobody is configured."""

    def __init__(self):
        super().__init__(
            message="No speakers configured. Add at least one companion to the chat.",
            code="NO_PARTICIPANTS",
        )


# =============================================================================
# Companion Errors
# =============================================================================

class CompanionError(TroupeError):
    """Base exception for companion lookups and configuration."""
    pass


class UnknownCompanionError(CompanionError):
    """Raised when a companion is not registered."""

    def __init__(self, name: str):
        super().__init__(
            message=f"Companion '{name}' is not registered",
            code="UNKNOWN_COMPANION",
            details={"name": name},
        )


class NoSpeakerSelectedError(CompanionError):
    """Raised when every selection rule passed without naming a speaker."""

    def __init__(self, rules: list[str]):
        super().__init__(
            message="No selection rule picked a speaker",
            code="NO_SPEAKER_SELECTED",
            details={"rules": rules},
        )


# =============================================================================
# Backend Reply Errors
# =============================================================================

class ResponseParseError(TroupeError):
    """Raised when a backend reply cannot be parsed into the expected schema."""

    def __init__(self, reason: str, original_error: Optional[Exception] = None):
        details: dict[str, Any] = {"reason": reason}
        if original_error:
            details["original_error"] = str(original_error)
            details["original_type"] = type(original_error).__name__
        super().__init__(
            message=f"JSON parsing error: {reason}",
            code="PARSE_ERROR",
            details=details,
        )


class StreamError(TroupeError):
    """Base exception for event-stream replies."""
    pass


class UnreadableStreamError(StreamError):
    """Raised when the reply body cannot be read at all."""

    def __init__(self, reason: str = "Response body is not readable."):
        super().__init__(message=reason, code="UNREADABLE_BODY")


class IncompleteStreamError(StreamError):
    """Raised when a stream ends before any data object was observed."""

    def __init__(
        self,
        reason: str = "Error in response stream or incomplete stream received.",
    ):
        super().__init__(message=reason, code="INCOMPLETE_STREAM")


# =============================================================================
# Dispatch Errors
# =============================================================================

class DispatchError(TroupeError):
    """The single error kind surfaced by the job dispatcher.

    Attributes:
        reason: Machine-readable reason (see ``DispatchReason``).
        job: The job that failed.
        job_response: Partially-built response, if one was produced.
        cause: Underlying transport/parse error, if any.
    """

    def __init__(
        self,
        message: str,
        reason: str,
        job: "GenerationJob",
        job_response: Optional["JobResponse"] = None,
        cause: Optional[BaseException] = None,
    ):
        details: dict[str, Any] = {"reason": reason, "job_id": job.job_id}
        if cause is not None:
            details["cause"] = str(cause)
            details["cause_type"] = type(cause).__name__
        super().__init__(message, "DISPATCH_ERROR", details)
        self.reason = reason
        self.job = job
        self.job_response = job_response
        self.cause = cause


# =============================================================================
# Persistence Errors
# =============================================================================

class PersistenceError(TroupeError):
    """Raised when database operations fail."""

    def __init__(
        self,
        operation: str,
        reason: str,
        original_error: Optional[Exception] = None,
    ):
        details = {"operation": operation, "reason": reason}
        if original_error:
            details["original_error"] = str(original_error)
        super().__init__(
            message=f"Database {operation} failed: {reason}",
            code="PERSISTENCE_ERROR",
            details=details,
        )
