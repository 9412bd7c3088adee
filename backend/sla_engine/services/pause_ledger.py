"""
Pause Ledger for the SLA engine.

Freezes a ticket's SLA clock and resumes it later without losing
elapsed-time accuracy.

Key Rules:
- At most one active (unresumed) pause record per ticket
- Pause records are append-only history: closed on resume, never deleted
- Resume extends due_at by the whole minutes paused, so the time
  available to resolve the ticket is conserved across any number of
  pause/resume cycles
- Every precondition failure raises a distinct error; resuming twice
  never extends the deadline twice

Concurrency:
Ticket and pause record writes are conditional updates (see
SupabaseClient.claim_pause / release_pause / close_pause_record). When
the condition no longer holds the operation reports a conflict instead
of overwriting a concurrent change.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

from sla_engine.core.database import PAUSES_TABLE, get_supabase_client, to_iso
from sla_engine.core.exceptions import (
    AlreadyPausedError,
    DatabaseError,
    NoActivePauseError,
    PauseConflictError,
    TicketClosedError,
    TicketNotFoundError,
)
from sla_engine.models.enums import PauseReasonCategory
from sla_engine.models.schemas import PauseRecord, TicketSLAView, format_interval_minutes
from sla_engine.services.notifications import notification_service


logger = logging.getLogger(__name__)


@dataclass
class ResumeResult:
    """Outcome of a successful resume."""
    ticket_id: str
    pause_id: Optional[str]
    paused_minutes: int
    resumed_at: datetime
    new_due_at: Optional[datetime]
    total_paused_minutes: int

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "pause_id": self.pause_id,
            "paused_minutes": self.paused_minutes,
            "resumed_at": self.resumed_at.isoformat(),
            "new_due_at": self.new_due_at.isoformat() if self.new_due_at else None,
            "total_paused_minutes": self.total_paused_minutes,
        }


def _load_ticket(ticket_id: str) -> tuple[dict, TicketSLAView]:
    row = get_supabase_client().get_ticket(ticket_id)
    if not row:
        raise TicketNotFoundError(ticket_id)
    return row, TicketSLAView.model_validate(row)


def _active_pauses(ticket_id: str) -> list[PauseRecord]:
    rows = get_supabase_client().get_active_pauses(ticket_id)
    return [PauseRecord.model_validate(row) for row in rows]


def _pause_refusal(ticket_id: str):
    """Re-read a ticket after a failed claim and name the precondition that broke."""
    _, ticket = _load_ticket(ticket_id)
    if ticket.is_closed:
        return TicketClosedError(ticket_id, ticket.status)
    if ticket.is_paused:
        return AlreadyPausedError(
            ticket_id,
            to_iso(ticket.sla_paused_at) if ticket.sla_paused_at else None
        )
    return PauseConflictError(ticket_id, "pause")


# ==========================================
# PAUSE
# ==========================================

def pause_ticket(
    ticket_id: str,
    actor_id: str,
    reason_category: PauseReasonCategory,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> PauseRecord:
    """
    Pause a ticket's SLA clock.

    Args:
        ticket_id: Ticket to pause
        actor_id: User pausing the job
        reason_category: Why the job is paused
        reason: Free-text reason (defaults to the category label)
        notes: Optional notes
        now: Pause time (defaults to the current UTC time)

    Returns:
        The created PauseRecord

    Raises:
        TicketNotFoundError: Ticket doesn't exist
        TicketClosedError: Ticket is completed/cancelled
        AlreadyPausedError: Ticket already has an active pause
        PauseConflictError: Ticket changed concurrently
        DatabaseError: Pause record could not be written
    """
    now = now or datetime.now(timezone.utc)
    db = get_supabase_client()

    row, ticket = _load_ticket(ticket_id)

    if ticket.is_closed:
        raise TicketClosedError(ticket_id, ticket.status)

    if ticket.is_paused:
        raise AlreadyPausedError(
            ticket_id,
            to_iso(ticket.sla_paused_at) if ticket.sla_paused_at else None
        )

    active = _active_pauses(ticket_id)
    if active:
        raise AlreadyPausedError(ticket_id, to_iso(active[0].paused_at))

    if not db.claim_pause(ticket_id, now, ticket.pause_count + 1):
        error = _pause_refusal(ticket_id)
        logger.warning(f"Pause of ticket {ticket_id} refused after claim: {error.reason}")
        raise error

    payload = {
        "request_id": ticket_id,
        "paused_at": to_iso(now),
        "paused_by": actor_id,
        "reason": reason or reason_category.label,
        "reason_category": reason_category.value,
        "notes": notes,
    }

    try:
        inserted = db.insert_pause_record(payload)
    except Exception as e:
        # Undo the claim so the ticket is not left paused without a record
        db.release_pause(ticket_id, {"pause_count": ticket.pause_count})
        logger.error(f"Failed to record pause for ticket {ticket_id}: {e}")
        raise DatabaseError(
            "Failed to record pause",
            table=PAUSES_TABLE,
            operation="insert",
            original_error=str(e)
        ) from e

    record = PauseRecord.model_validate({**payload, **(inserted or {})})

    logger.info(
        f"Ticket {ticket_id} paused by {actor_id} ({reason_category.value}), "
        f"pause #{ticket.pause_count + 1}"
    )

    notification_service.notify_ticket_paused(row, reason_category)
    return record


# ==========================================
# RESUME
# ==========================================

def _resume_notes(existing: Optional[str], notes: Optional[str]) -> Optional[str]:
    if not notes:
        return existing
    return f"{existing or ''}\n[Resume] {notes}"


def resume_ticket(
    ticket_id: str,
    actor_id: str,
    notes: Optional[str] = None,
    now: Optional[datetime] = None
) -> ResumeResult:
    """
    Resume a paused ticket and extend its deadline by the paused minutes.

    Args:
        ticket_id: Ticket to resume
        actor_id: User resuming the job
        notes: Optional notes appended to the pause record
        now: Resume time (defaults to the current UTC time)

    Returns:
        ResumeResult with the paused minutes and the new due time

    Raises:
        TicketNotFoundError: Ticket doesn't exist
        TicketClosedError: Ticket is completed/cancelled
        NoActivePauseError: No active pause (including a repeated resume)
        PauseConflictError: More than one active pause, or the ticket
            changed concurrently
    """
    now = now or datetime.now(timezone.utc)
    db = get_supabase_client()

    row, ticket = _load_ticket(ticket_id)

    if ticket.is_closed:
        raise TicketClosedError(ticket_id, ticket.status)

    active = _active_pauses(ticket_id)
    if not active:
        raise NoActivePauseError(ticket_id)
    if len(active) > 1:
        logger.warning(f"Ticket {ticket_id} has {len(active)} active pauses; refusing to resume")
        raise PauseConflictError(ticket_id, "resume")

    pause = active[0]
    paused_minutes = pause.paused_minutes(until=now)

    if not db.close_pause_record(pause.id, now, actor_id, _resume_notes(pause.notes, notes)):
        # Another resume closed it first
        raise NoActivePauseError(ticket_id)

    new_due_at = None
    if ticket.due_at is not None:
        new_due_at = ticket.due_at + timedelta(minutes=paused_minutes)

    total_paused = ticket.sla_paused_duration + paused_minutes
    fields = {"sla_paused_duration": format_interval_minutes(total_paused)}
    if new_due_at is not None:
        fields["due_at"] = to_iso(new_due_at)

    if not db.release_pause(ticket_id, fields):
        logger.warning(
            f"Pause record {pause.id} closed but ticket {ticket_id} was no longer paused; "
            f"due_at not extended"
        )
        raise PauseConflictError(ticket_id, "resume")

    logger.info(
        f"Ticket {ticket_id} resumed by {actor_id} after {paused_minutes} min "
        f"(total paused {total_paused} min)"
    )

    notification_service.notify_ticket_resumed(row)

    return ResumeResult(
        ticket_id=ticket_id,
        pause_id=pause.id,
        paused_minutes=paused_minutes,
        resumed_at=now,
        new_due_at=new_due_at,
        total_paused_minutes=total_paused,
    )


# ==========================================
# HISTORY
# ==========================================

def get_active_pause(ticket_id: str) -> Optional[PauseRecord]:
    """The ticket's active pause, if any."""
    active = _active_pauses(ticket_id)
    return active[0] if active else None


def get_pause_history(ticket_id: str) -> list[PauseRecord]:
    """All pause records of a ticket, newest first, including closed ones."""
    rows = get_supabase_client().get_pause_history(ticket_id)
    return [PauseRecord.model_validate(row) for row in rows]
