"""
Pydantic schemas for data validation and serialization.
Covers the rows the SLA engine reads (tickets, pauses, calendar, rules)
and the request bodies of its API.
"""
import re
from datetime import date, datetime, time, timezone
from typing import Optional, Any

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from .enums import (
    PauseReasonCategory,
    SLAMode,
    SLAStatus,
    TicketStatus,
)


_INTERVAL_DAYS = re.compile(r"(\d+)\s*days?", re.IGNORECASE)
_INTERVAL_HOURS = re.compile(r"(\d+)\s*hours?", re.IGNORECASE)
_INTERVAL_MINUTES = re.compile(r"(\d+)\s*min(?:ute)?s?", re.IGNORECASE)
_INTERVAL_CLOCK = re.compile(r"(\d+):(\d+)(?::(\d+))?")


def format_interval_minutes(minutes: int) -> str:
    """Postgres interval literal for a whole number of minutes ("45 minutes")."""
    return f"{max(0, int(minutes))} minutes"


def parse_interval_minutes(value: Any) -> int:
    """
    Parse a stored `sla_paused_duration` interval into whole minutes.

    Postgres returns intervals as "HH:MM:SS" or "N days HH:MM:SS";
    the literal written on resume ("45 minutes") and plain integers are
    accepted too. Seconds are truncated. Anything else reads as 0.
    """
    if value is None or value == "":
        return 0
    if isinstance(value, (int, float)):
        return max(0, int(value))

    text = str(value).strip()
    if text.isdigit():
        return int(text)

    total = 0

    match = _INTERVAL_DAYS.search(text)
    if match:
        total += int(match.group(1)) * 24 * 60

    match = _INTERVAL_CLOCK.search(text)
    if match:
        total += int(match.group(1)) * 60 + int(match.group(2))
        return total

    match = _INTERVAL_HOURS.search(text)
    if match:
        total += int(match.group(1)) * 60

    match = _INTERVAL_MINUTES.search(text)
    if match:
        total += int(match.group(1))

    return total


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Stored timestamps without an offset are UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ==========================================
# TICKET (SLA subset)
# ==========================================

class TicketSLAView(BaseModel):
    """
    The slice of a maintenance ticket the engine needs.
    Owned by the ticket store; the engine writes only sla_status and pause fields.
    """
    id: str
    title: str = ""
    created_at: Optional[datetime] = None
    due_at: Optional[datetime] = None
    status: str
    sla_status: Optional[str] = None
    sla_mode: SLAMode = SLAMode.CALENDAR
    sla_hours: Optional[float] = None
    branch_id: Optional[str] = None
    is_paused: bool = False
    sla_paused_at: Optional[datetime] = None
    sla_paused_duration: int = 0
    pause_count: int = 0
    assigned_user_id: Optional[str] = None
    created_by: Optional[str] = None

    @field_validator("sla_mode", mode="before")
    @classmethod
    def parse_mode(cls, v: Any) -> SLAMode:
        if isinstance(v, SLAMode):
            return v
        return SLAMode.parse(v)

    @field_validator("is_paused", mode="before")
    @classmethod
    def null_is_not_paused(cls, v: Any) -> bool:
        return bool(v)

    @field_validator("pause_count", mode="before")
    @classmethod
    def null_pause_count(cls, v: Any) -> int:
        return int(v or 0)

    @field_validator("sla_paused_duration", mode="before")
    @classmethod
    def parse_paused_duration(cls, v: Any) -> int:
        return parse_interval_minutes(v)

    @field_validator("created_at", "due_at", "sla_paused_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def is_closed(self) -> bool:
        return self.status in (TicketStatus.COMPLETED.value, TicketStatus.CANCELLED.value)

    @property
    def stored_sla_status(self) -> Optional[SLAStatus]:
        return SLAStatus.parse(self.sla_status)


# ==========================================
# PAUSE RECORD
# ==========================================

class PauseRecord(BaseModel):
    """One pause of a ticket. resumed_at is NULL while the pause is active."""
    id: Optional[str] = None
    ticket_id: str = Field(validation_alias=AliasChoices("request_id", "ticket_id"))
    paused_at: datetime
    paused_by: str
    reason: str = ""
    reason_category: Optional[PauseReasonCategory] = None
    notes: Optional[str] = None
    resumed_at: Optional[datetime] = None
    resumed_by: Optional[str] = None

    @field_validator("reason_category", mode="before")
    @classmethod
    def unknown_category_is_other(cls, v: Any) -> Optional[PauseReasonCategory]:
        if v is None or isinstance(v, PauseReasonCategory):
            return v
        try:
            return PauseReasonCategory(v)
        except ValueError:
            return PauseReasonCategory.OTHER

    @field_validator("paused_at", "resumed_at")
    @classmethod
    def assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(v)

    @property
    def is_active(self) -> bool:
        return self.resumed_at is None

    def paused_minutes(self, until: Optional[datetime] = None) -> int:
        """Whole minutes paused, up to resumed_at (or `until` while active)."""
        end = self.resumed_at or until or datetime.now(timezone.utc)
        return max(0, int((end - self.paused_at).total_seconds() // 60))


# ==========================================
# WORKING CALENDAR
# ==========================================

class WorkingHoursEntry(BaseModel):
    """
    Opening window of a branch on one weekday.
    day_of_week: 0=Sunday .. 6=Saturday (branch_working_hours convention).
    """
    day_of_week: int = Field(..., ge=0, le=6)
    open_time: time
    close_time: time
    is_closed: bool = False

    @field_validator("is_closed", mode="before")
    @classmethod
    def null_is_open(cls, v: Any) -> bool:
        return bool(v)


class HolidayEntry(BaseModel):
    """A holiday row; branch_id NULL applies to every branch."""
    holiday_date: date = Field(validation_alias=AliasChoices("date", "holiday_date"))
    name: str = ""
    branch_id: Optional[str] = None
    is_recurring: bool = False

    @field_validator("is_recurring", mode="before")
    @classmethod
    def null_not_recurring(cls, v: Any) -> bool:
        return bool(v)


# ==========================================
# ESCALATION RULE
# ==========================================

class EscalationRule(BaseModel):
    """Read-only escalation configuration for one threshold tier."""
    id: Optional[str] = None
    name: str = ""
    threshold_percent: int
    notify_roles: list[str] = Field(default_factory=list)
    is_active: bool = True
    action_type: Optional[str] = None

    @field_validator("notify_roles", mode="before")
    @classmethod
    def null_roles(cls, v: Any) -> list[str]:
        return list(v or [])

    @field_validator("is_active", mode="before")
    @classmethod
    def null_is_active(cls, v: Any) -> bool:
        return True if v is None else bool(v)


# ==========================================
# API REQUEST BODIES
# ==========================================

class PauseRequest(BaseModel):
    """Request body for pausing a ticket's SLA."""
    actor_id: str = Field(..., min_length=1, description="User pausing the job")
    reason_category: PauseReasonCategory
    reason: Optional[str] = Field(None, max_length=500)
    notes: Optional[str] = Field(None, max_length=2000)


class ResumeRequest(BaseModel):
    """Request body for resuming a paused ticket."""
    actor_id: str = Field(..., min_length=1, description="User resuming the job")
    notes: Optional[str] = Field(None, max_length=2000)


class DueAtRequest(BaseModel):
    """Request body for a due-time preview."""
    start: datetime
    sla_hours: float = Field(..., gt=0, le=24 * 365)
    mode: SLAMode = SLAMode.CALENDAR
    branch_id: Optional[str] = None
    paused_minutes: int = Field(0, ge=0)

    @model_validator(mode="after")
    def branch_required_for_working_hours(self) -> "DueAtRequest":
        if self.mode == SLAMode.WORKING_HOURS and not self.branch_id:
            raise ValueError("branch_id is required for working_hours mode")
        return self
