"""
Enum types that match the values stored in Supabase.
These must stay in sync with the database schema.
"""
from enum import Enum
from typing import Optional


class TicketStatus(str, Enum):
    """
    Business workflow status of a maintenance ticket.
    Matches: status_enum ('pending', 'assigned', 'in_progress', 'completed', 'cancelled')
    """
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_closed(self) -> bool:
        return self in (TicketStatus.COMPLETED, TicketStatus.CANCELLED)


class SLAStatus(str, Enum):
    """
    Derived SLA classification cached on the ticket (sla_status column).

    on_track < warning < critical < breached is a total order;
    completed is reachable from any state and is terminal.
    """
    NO_SLA = "no_sla"
    ON_TRACK = "on_track"
    WARNING = "warning"
    CRITICAL = "critical"
    BREACHED = "breached"
    COMPLETED = "completed"

    @property
    def severity(self) -> int:
        """Rank on the escalation order; -1 for statuses outside it."""
        return _SEVERITY.get(self, -1)

    @property
    def label(self) -> str:
        return _STATUS_LABELS[self]

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["SLAStatus"]:
        """Parse a stored value; unknown or empty values read as absent."""
        if not value:
            return None
        try:
            return cls(value)
        except ValueError:
            return None


_SEVERITY = {
    SLAStatus.ON_TRACK: 0,
    SLAStatus.WARNING: 1,
    SLAStatus.CRITICAL: 2,
    SLAStatus.BREACHED: 3,
}

_STATUS_LABELS = {
    SLAStatus.NO_SLA: "No SLA",
    SLAStatus.ON_TRACK: "On track",
    SLAStatus.WARNING: "Due soon",
    SLAStatus.CRITICAL: "Urgent",
    SLAStatus.BREACHED: "SLA breached",
    SLAStatus.COMPLETED: "Completed",
}

class SLAMode(str, Enum):
    """
    Time accounting mode of a ticket (sla_mode column).
    calendar: continuous wall-clock; working_hours: branch calendar with holidays.
    """
    CALENDAR = "calendar"
    WORKING_HOURS = "working_hours"

    @classmethod
    def parse(cls, value: Optional[str]) -> "SLAMode":
        """Tickets without a stored mode use calendar accounting."""
        if value == cls.WORKING_HOURS.value:
            return cls.WORKING_HOURS
        return cls.CALENDAR


class PauseReasonCategory(str, Enum):
    """Why a job was paused (job_pauses.reason_category)."""
    WAITING_PARTS = "waiting_parts"
    WAITING_APPROVAL = "waiting_approval"
    WAITING_VENDOR = "waiting_vendor"
    CUSTOMER_UNAVAILABLE = "customer_unavailable"
    WEATHER = "weather"
    OTHER = "other"

    @property
    def label(self) -> str:
        return _REASON_LABELS[self]


_REASON_LABELS = {
    PauseReasonCategory.WAITING_PARTS: "Waiting for parts",
    PauseReasonCategory.WAITING_APPROVAL: "Waiting for approval",
    PauseReasonCategory.WAITING_VENDOR: "Waiting for vendor",
    PauseReasonCategory.CUSTOMER_UNAVAILABLE: "Customer unavailable",
    PauseReasonCategory.WEATHER: "Weather",
    PauseReasonCategory.OTHER: "Other",
}


class NotificationType(str, Enum):
    """Notification types written by the engine (notifications.type)."""
    SLA_WARNING = "sla_warning"
    JOB_PAUSED = "job_paused"
    JOB_RESUMED = "job_resumed"
