# Data models - Enums and Pydantic Schemas
from .enums import (
    TicketStatus,
    SLAStatus,
    SLAMode,
    PauseReasonCategory,
    NotificationType,
)
from .schemas import (
    TicketSLAView,
    PauseRecord,
    WorkingHoursEntry,
    HolidayEntry,
    EscalationRule,
    PauseRequest,
    ResumeRequest,
    DueAtRequest,
    parse_interval_minutes,
    format_interval_minutes,
)

__all__ = [
    # Enums
    "TicketStatus",
    "SLAStatus",
    "SLAMode",
    "PauseReasonCategory",
    "NotificationType",
    # Ticket & Pause Schemas
    "TicketSLAView",
    "PauseRecord",
    # Calendar Schemas
    "WorkingHoursEntry",
    "HolidayEntry",
    # Escalation Schemas
    "EscalationRule",
    # Request Schemas
    "PauseRequest",
    "ResumeRequest",
    "DueAtRequest",
    "parse_interval_minutes",
    "format_interval_minutes",
]
