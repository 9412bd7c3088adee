# Services - Business Logic Layer
"""
SLA Engine Services Module.

This module provides the core business logic for:
- Working calendars and deadline computation
- SLA status classification
- Pausing and resuming the SLA clock
- Escalation of threshold crossings
- The periodic SLA sweep and its scheduler
"""

# Working Calendar
from .working_calendar import (
    WorkingCalendar,
    resolve_schedule,
    resolve_holidays,
    resolve_calendar,
    default_schedule,
    clear_calendar_cache,
)

# Deadline Calculation
from .deadline import (
    DueAtCalculation,
    WorkingHoursProgress,
    compute_due_at,
    add_working_minutes,
    count_working_minutes,
    calculate_working_hours_progress,
    format_minutes_readable,
)

# Status Classification
from .sla_status import (
    SLAInfo,
    classify,
    evaluate_ticket_status,
    get_sla_info,
    format_time_remaining,
)

# Notifications
from .notifications import (
    NotificationBatch,
    NotificationService,
    notification_service,
)

# Pause Ledger
from .pause_ledger import (
    ResumeResult,
    pause_ticket,
    resume_ticket,
    get_active_pause,
    get_pause_history,
)

# Escalation
from .escalation import (
    EscalationDecision,
    EscalationResult,
    should_escalate,
    find_matching_rule,
    detect,
    trigger_escalation,
    check_and_escalate,
)

# Sweep
from .sweep import (
    SweepSummary,
    run_sla_sweep,
)

# Background Job Scheduler
from .scheduler import (
    SLAScheduler,
    JobFailureMonitor,
    get_scheduler,
)


__all__ = [
    # Working Calendar
    "WorkingCalendar",
    "resolve_schedule",
    "resolve_holidays",
    "resolve_calendar",
    "default_schedule",
    "clear_calendar_cache",

    # Deadline
    "DueAtCalculation",
    "WorkingHoursProgress",
    "compute_due_at",
    "add_working_minutes",
    "count_working_minutes",
    "calculate_working_hours_progress",
    "format_minutes_readable",

    # Status
    "SLAInfo",
    "classify",
    "evaluate_ticket_status",
    "get_sla_info",
    "format_time_remaining",

    # Notifications
    "NotificationBatch",
    "NotificationService",
    "notification_service",

    # Pause Ledger
    "ResumeResult",
    "pause_ticket",
    "resume_ticket",
    "get_active_pause",
    "get_pause_history",

    # Escalation
    "EscalationDecision",
    "EscalationResult",
    "should_escalate",
    "find_matching_rule",
    "detect",
    "trigger_escalation",
    "check_and_escalate",

    # Sweep
    "SweepSummary",
    "run_sla_sweep",

    # Scheduler
    "SLAScheduler",
    "JobFailureMonitor",
    "get_scheduler",
]
