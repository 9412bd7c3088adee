"""
Deadline Calculator for the SLA engine.

Turns an SLA budget into a due time under one of two accounting modes:

- calendar:       due = start + budget - paused minutes (wall clock)
- working_hours:  walk forward day by day through the branch calendar,
                  spending the budget only inside open windows

Example (Mon-Sat 09:00-18:00, Sunday closed, 4 hour budget):
    created Friday 16:00
    Friday    16:00-18:00 -> 2h spent
    Saturday  09:00-11:00 -> 2h spent
    due_at = Saturday 11:00

The walk is an explicit loop bounded by `working_hours_max_days`.
Hitting the bound returns the last pointer reached with
`bound_exceeded=True` instead of looping forever on a calendar that
never opens.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sla_engine.core.config import settings
from sla_engine.models.enums import SLAMode
from sla_engine.services.working_calendar import WorkingCalendar, resolve_calendar


logger = logging.getLogger(__name__)


@dataclass
class DueAtCalculation:
    """Result of a due-time computation, with audit figures."""
    due_at: datetime
    mode: SLAMode
    working_minutes: int  # Budget minutes actually consumed
    calendar_minutes: int  # Wall-clock span from start to due_at
    paused_minutes: int
    bound_exceeded: bool = False
    days_walked: int = 0

    def to_dict(self) -> dict:
        return {
            "due_at": self.due_at.isoformat(),
            "mode": self.mode.value,
            "working_minutes": self.working_minutes,
            "calendar_minutes": self.calendar_minutes,
            "paused_minutes": self.paused_minutes,
            "bound_exceeded": self.bound_exceeded,
            "days_walked": self.days_walked,
        }


@dataclass
class WorkingHoursProgress:
    """How much of a working-hours budget has elapsed."""
    elapsed_minutes: int
    total_minutes: int
    percentage: float  # Clamped to 0..100 for display
    remaining_minutes: int

    @property
    def fraction(self) -> Optional[float]:
        """Unclamped elapsed/total, or None when the window holds no working time."""
        if self.total_minutes <= 0:
            return None
        return max(0.0, self.elapsed_minutes / self.total_minutes)

    def to_dict(self) -> dict:
        return {
            "elapsed_minutes": self.elapsed_minutes,
            "total_minutes": self.total_minutes,
            "percentage": round(self.percentage, 2),
            "remaining_minutes": self.remaining_minutes,
        }


def _utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end (truncated toward zero)."""
    seconds = (_utc(end) - _utc(start)).total_seconds()
    return int(seconds / 60)


def budget_minutes(sla_hours: float, paused_minutes: int = 0) -> int:
    """SLA budget in minutes after subtracting paused time."""
    return int(round(sla_hours * 60)) - max(0, paused_minutes)


# ==========================================
# WORKING-HOURS WALK
# ==========================================

def add_working_minutes(
    start: datetime,
    minutes: int,
    calendar: WorkingCalendar,
    max_days: Optional[int] = None
) -> tuple[datetime, int, bool, int]:
    """
    Spend `minutes` of working time starting at `start`.

    Each iterated day either contributes nothing (closed, holiday,
    start already past closing) or the minutes between
    max(pointer, open) and close.

    Args:
        start: Start of the budget
        minutes: Working minutes to spend
        calendar: Resolved branch calendar
        max_days: Safety bound (defaults to settings.working_hours_max_days)

    Returns:
        Tuple of (due time, minutes consumed, bound exceeded, days walked)
    """
    if max_days is None:
        max_days = settings.working_hours_max_days

    pointer = calendar.localize(start)
    if minutes <= 0:
        return pointer, 0, False, 0

    consumed = 0

    for day in range(max_days):
        window = calendar.window_on(pointer.date())

        if window is not None:
            open_at, close_at = window
            effective_start = max(pointer, open_at)
            available = minutes_between(effective_start, close_at)

            if available > 0:
                needed = minutes - consumed
                if available >= needed:
                    due = (_utc(effective_start) + timedelta(minutes=needed)).astimezone(calendar.tz)
                    return due, minutes, False, day + 1
                consumed += available

        pointer = calendar.next_midnight(pointer)

    return pointer, consumed, True, max_days


def count_working_minutes(
    start: datetime,
    end: datetime,
    calendar: WorkingCalendar,
    max_days: Optional[int] = None
) -> int:
    """
    Count working minutes between two timestamps.

    Args:
        start: Window start
        end: Window end
        calendar: Resolved branch calendar
        max_days: Safety bound (defaults to settings.working_hours_max_days)

    Returns:
        Working minutes inside [start, end); 0 when end <= start
    """
    if max_days is None:
        max_days = settings.working_hours_max_days

    pointer = calendar.localize(start)
    end_local = calendar.localize(end)
    if end_local <= pointer:
        return 0

    total = 0
    for _ in range(max_days):
        if pointer >= end_local:
            break

        window = calendar.window_on(pointer.date())
        if window is not None:
            open_at, close_at = window
            effective_start = max(pointer, open_at)
            effective_end = min(end_local, close_at)
            if effective_start < effective_end:
                total += minutes_between(effective_start, effective_end)

        pointer = calendar.next_midnight(pointer)
    else:
        if pointer < end_local:
            logger.warning(
                f"Working-minute count for branch {calendar.branch_id} stopped after "
                f"{max_days} days ({start.isoformat()} -> {end.isoformat()})"
            )

    return total


# ==========================================
# PUBLIC OPERATIONS
# ==========================================

def compute_due_at(
    start: datetime,
    sla_hours: float,
    mode: SLAMode = SLAMode.CALENDAR,
    branch_id: Optional[str] = None,
    paused_minutes: int = 0,
    calendar: Optional[WorkingCalendar] = None
) -> DueAtCalculation:
    """
    Compute a ticket's due time.

    Args:
        start: When the SLA clock starts (usually created_at)
        sla_hours: SLA budget in hours
        mode: calendar or working_hours accounting
        branch_id: Branch whose calendar applies (working_hours mode)
        paused_minutes: Minutes to subtract from the budget
        calendar: Pre-resolved calendar (skips the lookup)

    Returns:
        DueAtCalculation with the due time and audit figures
    """
    start = _utc(start)
    paused_minutes = max(0, paused_minutes)
    target = budget_minutes(sla_hours, paused_minutes)

    if mode == SLAMode.CALENDAR:
        due_at = start + timedelta(minutes=target)
        return DueAtCalculation(
            due_at=due_at,
            mode=mode,
            working_minutes=target,
            calendar_minutes=target,
            paused_minutes=paused_minutes,
        )

    max_days = settings.working_hours_max_days
    if calendar is None:
        local_start = start.astimezone(settings.calendar_tz).date()
        calendar = resolve_calendar(branch_id, local_start, local_start + timedelta(days=max_days))

    due_at, consumed, bound_exceeded, days_walked = add_working_minutes(
        start, target, calendar, max_days
    )

    if bound_exceeded:
        logger.warning(
            f"⚠️ Working-hours walk for branch {branch_id} exceeded {max_days} days; "
            f"{consumed}/{target} minutes placed, falling back to {due_at.isoformat()}"
        )

    return DueAtCalculation(
        due_at=due_at,
        mode=mode,
        working_minutes=consumed,
        calendar_minutes=minutes_between(start, due_at),
        paused_minutes=paused_minutes,
        bound_exceeded=bound_exceeded,
        days_walked=days_walked,
    )


def calculate_working_hours_progress(
    created_at: datetime,
    due_at: datetime,
    branch_id: Optional[str],
    paused_minutes: int = 0,
    now: Optional[datetime] = None,
    calendar: Optional[WorkingCalendar] = None
) -> WorkingHoursProgress:
    """
    Measure working-hours progress of a ticket.

    Elapsed and total are counted by two independent walks over the
    current calendar, so holidays added after the due time was set
    are honoured.

    Args:
        created_at: SLA start
        due_at: Current due time
        branch_id: Branch whose calendar applies
        paused_minutes: Minutes paused so far (subtracted from elapsed)
        now: Evaluation time (defaults to the current UTC time)
        calendar: Pre-resolved calendar (skips the lookup)

    Returns:
        WorkingHoursProgress
    """
    if now is None:
        now = datetime.now(timezone.utc)

    if calendar is None:
        tz = settings.calendar_tz
        first = _utc(created_at).astimezone(tz).date()
        last = max(_utc(now), _utc(due_at)).astimezone(tz).date()
        calendar = resolve_calendar(branch_id, first, last)

    elapsed = count_working_minutes(created_at, now, calendar) - max(0, paused_minutes)
    total = count_working_minutes(created_at, due_at, calendar)

    percentage = (elapsed / total) * 100 if total > 0 else 0.0

    return WorkingHoursProgress(
        elapsed_minutes=max(0, elapsed),
        total_minutes=total,
        percentage=min(100.0, max(0.0, percentage)),
        remaining_minutes=max(0, total - elapsed),
    )


def format_minutes_readable(minutes: int) -> str:
    """
    Format working minutes for display.

    Examples:
        "45 min", "2 hr", "2 hr 15 min", "overdue"
    """
    if minutes < 0:
        return "overdue"

    hours, mins = divmod(minutes, 60)
    if hours == 0:
        return f"{mins} min"
    if mins == 0:
        return f"{hours} hr"
    return f"{hours} hr {mins} min"
