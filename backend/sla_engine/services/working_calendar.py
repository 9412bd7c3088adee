"""
Working Calendar Provider for the SLA engine.

Resolves a branch's weekly opening windows and holiday dates, the two
inputs of working-hours deadline accounting.

Key Rules:
- Every weekday always has an entry: days a branch never configured
  take the default schedule (Mon-Sat 09:00-18:00, Sunday closed)
- A holiday closes the whole day regardless of the weekday schedule
- Holidays with no branch apply to every branch; recurring holidays
  repeat on the same month/day every year
- A failed lookup falls back to the default calendar instead of
  failing the caller, so an unreachable calendar never blocks
  deadline computation for an in-flight ticket
"""
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Optional

from pydantic import ValidationError

from sla_engine.core.config import settings
from sla_engine.core.database import get_supabase_client
from sla_engine.models.schemas import HolidayEntry, WorkingHoursEntry


logger = logging.getLogger(__name__)

DAYS_IN_WEEK = 7

# Holidays are loaded for a wide window and filtered per request
HOLIDAY_WINDOW_PAST_DAYS = 400
HOLIDAY_WINDOW_FUTURE_DAYS = 730


# Cache schedules/holidays to avoid repeated DB calls during a sweep
_schedule_cache: dict[str, tuple[datetime, list[WorkingHoursEntry]]] = {}
_holiday_cache: dict[str, tuple[datetime, "_HolidayRows"]] = {}


@dataclass
class _HolidayRows:
    window_start: date
    window_end: date
    dated: list[HolidayEntry] = field(default_factory=list)
    recurring: list[HolidayEntry] = field(default_factory=list)


def day_of_week(value: date) -> int:
    """Day number in the branch_working_hours convention (0=Sunday .. 6=Saturday)."""
    return (value.weekday() + 1) % DAYS_IN_WEEK


def clear_calendar_cache() -> None:
    """Drop cached schedules and holidays (e.g. after an admin edit)."""
    _schedule_cache.clear()
    _holiday_cache.clear()


def default_schedule() -> list[WorkingHoursEntry]:
    """The fallback week: configured open/close times, configured closed days."""
    closed_days = settings.default_closed_days
    open_time = settings.default_open
    close_time = settings.default_close

    return [
        WorkingHoursEntry(
            day_of_week=day,
            open_time=time(0, 0) if day in closed_days else open_time,
            close_time=time(0, 0) if day in closed_days else close_time,
            is_closed=day in closed_days,
        )
        for day in range(DAYS_IN_WEEK)
    ]


def _cache_get(cache: dict, key: str):
    if settings.holiday_cache_ttl_seconds <= 0:
        return None
    cached = cache.get(key)
    if cached and datetime.now(timezone.utc) < cached[0]:
        return cached[1]
    return None


def _cache_put(cache: dict, key: str, value) -> None:
    if settings.holiday_cache_ttl_seconds <= 0:
        return
    expiry = datetime.now(timezone.utc) + timedelta(seconds=settings.holiday_cache_ttl_seconds)
    cache[key] = (expiry, value)


# ==========================================
# WEEKLY SCHEDULE
# ==========================================

def resolve_schedule(branch_id: Optional[str]) -> list[WorkingHoursEntry]:
    """
    Resolve the 7 weekday entries of a branch, ordered Sunday..Saturday.

    Rows the branch has configured win; missing weekdays are filled
    from the default schedule. Any lookup failure returns the default
    schedule.

    Args:
        branch_id: Branch to resolve; None yields the default schedule

    Returns:
        Exactly seven WorkingHoursEntry values
    """
    if not branch_id:
        return default_schedule()

    cached = _cache_get(_schedule_cache, branch_id)
    if cached is not None:
        return cached

    try:
        rows = get_supabase_client().get_branch_working_hours(branch_id)
    except Exception as e:
        logger.warning(
            f"Working hours lookup failed for branch {branch_id}, using default schedule: {e}"
        )
        return default_schedule()

    configured: dict[int, WorkingHoursEntry] = {}
    for row in rows:
        try:
            entry = WorkingHoursEntry.model_validate(row)
        except ValidationError as e:
            logger.warning(f"Ignoring invalid working hours row for branch {branch_id}: {e}")
            continue
        configured[entry.day_of_week] = entry

    schedule = [
        configured.get(entry.day_of_week, entry)
        for entry in default_schedule()
    ]

    _cache_put(_schedule_cache, branch_id, schedule)
    return schedule


# ==========================================
# HOLIDAYS
# ==========================================

def _parse_holidays(rows: list[dict], branch_id: Optional[str]) -> list[HolidayEntry]:
    holidays = []
    for row in rows:
        try:
            holidays.append(HolidayEntry.model_validate(row))
        except ValidationError as e:
            logger.warning(f"Ignoring invalid holiday row for branch {branch_id}: {e}")
    return holidays


def _load_holiday_rows(branch_id: Optional[str], start: date, end: date) -> _HolidayRows:
    """Load holiday rows, reusing the cached window when it covers [start, end]."""
    key = branch_id or "*"
    cached = _cache_get(_holiday_cache, key)
    if cached is not None and cached.window_start <= start and end <= cached.window_end:
        return cached

    db = get_supabase_client()

    today = date.today()
    window_start = min(start, today - timedelta(days=HOLIDAY_WINDOW_PAST_DAYS))
    window_end = max(end, today + timedelta(days=HOLIDAY_WINDOW_FUTURE_DAYS))

    rows = _HolidayRows(
        window_start=window_start,
        window_end=window_end,
        dated=_parse_holidays(db.get_holidays(branch_id, window_start, window_end), branch_id),
        recurring=_parse_holidays(db.get_recurring_holidays(branch_id), branch_id),
    )

    _cache_put(_holiday_cache, key, rows)
    return rows


def resolve_holidays(branch_id: Optional[str], start: date, end: date) -> set[date]:
    """
    Holiday dates that apply to a branch within [start, end].

    Includes global holidays (branch_id NULL) and recurring holidays
    projected onto every year of the range. A lookup failure yields
    no holidays.

    Args:
        branch_id: Branch to resolve; None matches global holidays only
        start: First date of the range (inclusive)
        end: Last date of the range (inclusive)

    Returns:
        Set of holiday dates
    """
    if end < start:
        return set()

    try:
        rows = _load_holiday_rows(branch_id, start, end)
    except Exception as e:
        logger.warning(f"Holiday lookup failed for branch {branch_id}, assuming none: {e}")
        return set()

    dates = {
        holiday.holiday_date
        for holiday in rows.dated
        if start <= holiday.holiday_date <= end
    }

    for holiday in rows.recurring:
        for year in range(start.year, end.year + 1):
            try:
                occurrence = holiday.holiday_date.replace(year=year)
            except ValueError:
                continue  # Feb 29 in a non-leap year
            if start <= occurrence <= end:
                dates.add(occurrence)

    return dates


# ==========================================
# RESOLVED CALENDAR
# ==========================================

@dataclass
class WorkingCalendar:
    """
    A branch's resolved schedule and holidays, interpreted in one timezone.

    Used by the deadline walk to get the open window of a given day.
    """
    schedule: list[WorkingHoursEntry]
    holidays: set[date] = field(default_factory=set)
    tz: tzinfo = timezone.utc
    branch_id: Optional[str] = None

    def entry_for(self, value: date) -> WorkingHoursEntry:
        dow = day_of_week(value)
        for entry in self.schedule:
            if entry.day_of_week == dow:
                return entry
        return default_schedule()[dow]

    def is_working_day(self, value: date) -> bool:
        if value in self.holidays:
            return False
        return not self.entry_for(value).is_closed

    def window_on(self, value: date) -> Optional[tuple[datetime, datetime]]:
        """
        (open, close) of a day as aware datetimes, or None when the day
        contributes no working time (closed, holiday, or close <= open).
        """
        if not self.is_working_day(value):
            return None

        entry = self.entry_for(value)
        open_at = datetime.combine(value, entry.open_time, tzinfo=self.tz)
        close_at = datetime.combine(value, entry.close_time, tzinfo=self.tz)

        if close_at <= open_at:
            return None
        return open_at, close_at

    def next_midnight(self, moment: datetime) -> datetime:
        return datetime.combine(moment.date() + timedelta(days=1), time.min, tzinfo=self.tz)

    def localize(self, moment: datetime) -> datetime:
        """Express a timestamp in the calendar's zone (naive values are UTC)."""
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz)


def resolve_calendar(
    branch_id: Optional[str],
    start: date,
    end: date
) -> WorkingCalendar:
    """
    Resolve schedule and holidays of a branch for the dates [start, end].

    Args:
        branch_id: Branch to resolve
        start: First date the caller will walk
        end: Last date the caller may walk

    Returns:
        WorkingCalendar in the configured calendar timezone
    """
    return WorkingCalendar(
        schedule=resolve_schedule(branch_id),
        holidays=resolve_holidays(branch_id, start, end),
        tz=settings.calendar_tz,
        branch_id=branch_id,
    )
