"""
Custom exceptions for the SLA engine.
Provides meaningful error types for different failure scenarios.
"""
from typing import Any, Optional


class SLAEngineException(Exception):
    """Base exception for all SLA engine errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        status_code: int = 500
    ):
        self.message = message
        self.details = details or {}
        self.status_code = status_code
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class DatabaseError(SLAEngineException):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        table: Optional[str] = None,
        operation: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if table:
            details["table"] = table
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = original_error

        super().__init__(message, details, status_code=500)


class TicketNotFoundError(SLAEngineException):
    """Raised when a referenced ticket doesn't exist."""

    def __init__(self, ticket_id: str):
        super().__init__(
            "Ticket not found",
            {"ticket_id": ticket_id},
            status_code=404
        )


# ==========================================
# PAUSE LEDGER PRECONDITIONS
# ==========================================

class PausePreconditionError(SLAEngineException):
    """
    Base for pause/resume precondition violations.

    Each subclass carries a stable `reason` code so callers can show
    a precise message. The ticket is left unchanged when raised.
    """

    reason: str = "precondition_failed"

    def __init__(self, message: str, ticket_id: str, **extra: Any):
        details = {"ticket_id": ticket_id, "reason": self.reason}
        details.update({k: v for k, v in extra.items() if v is not None})
        super().__init__(message, details, status_code=409)


class AlreadyPausedError(PausePreconditionError):
    """Raised when pausing a ticket that already has an active pause."""

    reason = "already_paused"

    def __init__(self, ticket_id: str, paused_at: Optional[str] = None):
        super().__init__("Ticket is already paused", ticket_id, paused_at=paused_at)


class TicketClosedError(PausePreconditionError):
    """Raised when pausing or resuming a completed/cancelled ticket."""

    reason = "ticket_closed"

    def __init__(self, ticket_id: str, status: Optional[str] = None):
        super().__init__("Ticket is already closed", ticket_id, status=status)


class NoActivePauseError(PausePreconditionError):
    """
    Raised when resuming a ticket without an active pause.

    A retried resume request lands here instead of extending the
    deadline a second time.
    """

    reason = "no_active_pause"

    def __init__(self, ticket_id: str):
        super().__init__("Ticket has no active pause to resume", ticket_id)


class PauseConflictError(PausePreconditionError):
    """Raised when a conditional pause/resume update matched no row."""

    reason = "conflict"

    def __init__(self, ticket_id: str, operation: str):
        super().__init__(
            "Ticket changed concurrently; operation not applied",
            ticket_id,
            operation=operation
        )


# ==========================================
# CALENDAR / CONFIGURATION
# ==========================================

class CalendarLookupError(SLAEngineException):
    """
    Raised by the calendar store when schedule or holiday rows cannot be read.

    Never reaches deadline callers: the calendar provider falls back
    to the default schedule.
    """

    def __init__(
        self,
        message: str,
        branch_id: Optional[str] = None,
        original_error: Optional[str] = None
    ):
        details = {}
        if branch_id:
            details["branch_id"] = branch_id
        if original_error:
            details["original_error"] = original_error
        super().__init__(message, details, status_code=503)


class ConfigurationError(SLAEngineException):
    """Raised when required configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        config_key: str,
        expected_type: Optional[str] = None,
        actual_value: Optional[str] = None
    ):
        details = {
            "config_key": config_key
        }
        if expected_type:
            details["expected_type"] = expected_type
        if actual_value:
            details["actual_value"] = actual_value[:50] if len(str(actual_value)) > 50 else actual_value

        super().__init__(message, details, status_code=500)


class SchedulerJobError(SLAEngineException):
    """Raised when a scheduler job fails."""

    def __init__(
        self,
        message: str,
        job_id: str,
        failure_count: int,
        last_error: Optional[str] = None
    ):
        details = {
            "job_id": job_id,
            "failure_count": failure_count,
        }
        if last_error:
            details["last_error"] = last_error

        super().__init__(message, details, status_code=500)
