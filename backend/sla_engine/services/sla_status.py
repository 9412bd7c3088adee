"""
SLA Status Classifier.

Maps a ticket's elapsed share of its SLA budget onto the status lattice:

    no_sla | on_track -> warning (>=75%) -> critical (>=90%) -> breached (>=100%)

`completed` overrides everything once the ticket is completed/cancelled.
Thresholds come from settings (warning/critical/breached percent).

Calendar tickets measure wall-clock progress; working-hours tickets use
the working-minutes progress of the branch calendar. While a ticket is
paused its classification is frozen at the moment the pause began.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sla_engine.core.config import settings
from sla_engine.models.enums import SLAMode, SLAStatus, TicketStatus
from sla_engine.models.schemas import TicketSLAView
from sla_engine.services.deadline import (
    WorkingHoursProgress,
    calculate_working_hours_progress,
)
from sla_engine.services.working_calendar import WorkingCalendar


logger = logging.getLogger(__name__)

CLOSED_STATUSES = (TicketStatus.COMPLETED.value, TicketStatus.CANCELLED.value)


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ==========================================
# CLASSIFICATION
# ==========================================

def status_from_percent(percent: float) -> SLAStatus:
    """Map an elapsed percentage onto on_track/warning/critical/breached."""
    warning, critical, breached = settings.sla_thresholds

    if percent >= breached:
        return SLAStatus.BREACHED
    if percent >= critical:
        return SLAStatus.CRITICAL
    if percent >= warning:
        return SLAStatus.WARNING
    return SLAStatus.ON_TRACK


def calendar_percent(created_at: datetime, due_at: datetime, now: datetime) -> float:
    """
    Wall-clock elapsed percentage, floored at 0.

    A zero or negative total duration counts as fully elapsed.
    """
    total = (_utc(due_at) - _utc(created_at)).total_seconds()
    if total <= 0:
        return 100.0

    elapsed = (_utc(now) - _utc(created_at)).total_seconds()
    return max(0.0, elapsed * 100 / total)


def classify(
    created_at: Optional[datetime],
    due_at: Optional[datetime],
    business_status: str,
    progress_fraction: Optional[float] = None,
    now: Optional[datetime] = None
) -> SLAStatus:
    """
    Classify a ticket's SLA status.

    Args:
        created_at: SLA start
        due_at: Deadline; None means the ticket has no SLA
        business_status: Workflow status (pending/assigned/in_progress/completed/cancelled)
        progress_fraction: Working-minutes progress supplied by the caller
            (working-hours mode); None uses wall-clock progress
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        The SLA status
    """
    if business_status in CLOSED_STATUSES:
        return SLAStatus.COMPLETED

    if due_at is None or created_at is None:
        return SLAStatus.NO_SLA

    # A mis-set deadline must not read as on_track
    if _utc(due_at) <= _utc(created_at):
        return SLAStatus.BREACHED

    if progress_fraction is not None:
        return status_from_percent(max(0.0, progress_fraction) * 100)

    return status_from_percent(calendar_percent(created_at, due_at, now or _now()))


def evaluation_time(ticket: TicketSLAView, now: Optional[datetime] = None) -> datetime:
    """The instant a ticket is evaluated at: the pause start while paused, else now."""
    if ticket.is_paused and ticket.sla_paused_at is not None:
        return ticket.sla_paused_at
    return now or _now()


def _measured_in_working_hours(ticket: TicketSLAView) -> bool:
    # Closed, no-SLA and mis-set deadlines are decided without a calendar walk
    return (
        ticket.sla_mode == SLAMode.WORKING_HOURS
        and not ticket.is_closed
        and ticket.due_at is not None
        and ticket.created_at is not None
        and ticket.due_at > ticket.created_at
    )


def working_hours_progress(
    ticket: TicketSLAView,
    now: datetime,
    calendar: Optional[WorkingCalendar] = None
) -> WorkingHoursProgress:
    return calculate_working_hours_progress(
        created_at=ticket.created_at,
        due_at=ticket.due_at,
        branch_id=ticket.branch_id,
        paused_minutes=ticket.sla_paused_duration,
        now=now,
        calendar=calendar,
    )


def evaluate_ticket_status(
    ticket: TicketSLAView,
    now: Optional[datetime] = None,
    calendar: Optional[WorkingCalendar] = None
) -> SLAStatus:
    """
    Recompute a ticket's SLA status under its own accounting mode.

    Working-hours tickets whose window holds no working time at all
    fall back to wall-clock progress.

    Args:
        ticket: Ticket to evaluate
        now: Evaluation time (defaults to the current UTC time)
        calendar: Pre-resolved branch calendar (working-hours mode)

    Returns:
        The SLA status
    """
    at = evaluation_time(ticket, now)

    if not _measured_in_working_hours(ticket):
        return classify(ticket.created_at, ticket.due_at, ticket.status, now=at)

    progress = working_hours_progress(ticket, at, calendar)
    if progress.fraction is None:
        logger.debug(
            f"Ticket {ticket.id} has no working minutes before its deadline, "
            f"using wall-clock progress"
        )

    return classify(
        ticket.created_at,
        ticket.due_at,
        ticket.status,
        progress_fraction=progress.fraction,
        now=at,
    )


# ==========================================
# READ-TIME SNAPSHOT
# ==========================================

@dataclass
class SLAInfo:
    """Live SLA view of one ticket, recomputed on every read."""
    ticket_id: str
    status: SLAStatus
    mode: SLAMode
    elapsed_percent: float
    time_remaining_ms: int
    is_overdue: bool
    formatted_time_remaining: str
    is_paused: bool = False
    due_at: Optional[datetime] = None
    working_progress: Optional[WorkingHoursProgress] = None

    @property
    def minutes_remaining(self) -> int:
        return int(self.time_remaining_ms / 60000)

    @property
    def label(self) -> str:
        return self.status.label

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "status": self.status.value,
            "label": self.label,
            "mode": self.mode.value,
            "elapsed_percent": round(self.elapsed_percent, 2),
            "time_remaining_ms": self.time_remaining_ms,
            "minutes_remaining": self.minutes_remaining,
            "is_overdue": self.is_overdue,
            "formatted_time_remaining": self.formatted_time_remaining,
            "is_paused": self.is_paused,
            "due_at": self.due_at.isoformat() if self.due_at else None,
            "working_progress": self.working_progress.to_dict() if self.working_progress else None,
        }


def format_time_remaining(ms: int) -> str:
    """
    Format a remaining duration for display.

    Examples:
        "2d 3h", "3h 15m", "45m", "overdue 2d 3h", "overdue 45m"
    """
    overdue = ms < 0
    total_minutes = abs(ms) // 60000
    hours, minutes = divmod(total_minutes, 60)

    if hours > 24:
        days, hours = divmod(hours, 24)
        text = f"{days}d {hours}h"
    elif hours > 0:
        text = f"{hours}h {minutes}m"
    else:
        text = f"{minutes}m"

    return f"overdue {text}" if overdue else text


def get_sla_info(
    ticket: TicketSLAView,
    now: Optional[datetime] = None,
    calendar: Optional[WorkingCalendar] = None
) -> SLAInfo:
    """
    Build the live SLA snapshot of a ticket without persisting anything.

    Args:
        ticket: Ticket to describe
        now: Evaluation time (defaults to the current UTC time)
        calendar: Pre-resolved branch calendar (working-hours mode)

    Returns:
        SLAInfo
    """
    at = evaluation_time(ticket, now)
    progress = None

    if _measured_in_working_hours(ticket):
        progress = working_hours_progress(ticket, at, calendar)
        status = classify(
            ticket.created_at,
            ticket.due_at,
            ticket.status,
            progress_fraction=progress.fraction,
            now=at,
        )
    else:
        status = classify(ticket.created_at, ticket.due_at, ticket.status, now=at)

    if status in (SLAStatus.COMPLETED, SLAStatus.NO_SLA):
        return SLAInfo(
            ticket_id=ticket.id,
            status=status,
            mode=ticket.sla_mode,
            elapsed_percent=0.0,
            time_remaining_ms=0,
            is_overdue=False,
            formatted_time_remaining="-",
            is_paused=ticket.is_paused,
            due_at=ticket.due_at,
        )

    remaining_ms = int((_utc(ticket.due_at) - _utc(at)).total_seconds() * 1000)

    if progress is not None and progress.fraction is not None:
        elapsed_percent = progress.percentage
    else:
        elapsed_percent = min(100.0, calendar_percent(ticket.created_at, ticket.due_at, at))

    return SLAInfo(
        ticket_id=ticket.id,
        status=status,
        mode=ticket.sla_mode,
        elapsed_percent=elapsed_percent,
        time_remaining_ms=remaining_ms,
        is_overdue=remaining_ms < 0,
        formatted_time_remaining=format_time_remaining(remaining_ms),
        is_paused=ticket.is_paused,
        due_at=ticket.due_at,
        working_progress=progress,
    )
