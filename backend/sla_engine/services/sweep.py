"""
SLA Sweep Driver.

The single authoritative periodic pass over open tickets:
load every open ticket with a deadline, re-classify it, persist any
status change and escalate forward threshold crossings.

Per-ticket failures are caught, counted and logged; the sweep always
continues with the remaining tickets. Only failing to load the ticket
list or the escalation rules aborts a sweep.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from sla_engine.core.database import TICKETS_TABLE, ESCALATION_RULES_TABLE, get_supabase_client
from sla_engine.core.exceptions import DatabaseError
from sla_engine.models.schemas import TicketSLAView
from sla_engine.services.escalation import check_and_escalate, load_escalation_rules


logger = logging.getLogger(__name__)


@dataclass
class SweepSummary:
    """Counts reported by one sweep, for observability."""
    started_at: datetime
    processed: int = 0
    status_changes: int = 0
    escalated: int = 0
    notifications_sent: int = 0
    conflicts: int = 0
    failed: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)
    finished_at: Optional[datetime] = None

    @property
    def status(self) -> str:
        return "partial_failure" if self.failed else "success"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed": self.processed,
            "status_changes": self.status_changes,
            "escalated": self.escalated,
            "notifications_sent": self.notifications_sent,
            "conflicts": self.conflicts,
            "failed": self.failed,
            "errors": self.errors,
        }


def run_sla_sweep(now: Optional[datetime] = None) -> SweepSummary:
    """
    Run one SLA sweep.

    Args:
        now: Evaluation time shared by every ticket (defaults to the current UTC time)

    Returns:
        SweepSummary

    Raises:
        DatabaseError: The ticket list or the escalation rules could not be loaded
    """
    now = now or datetime.now(timezone.utc)
    summary = SweepSummary(started_at=now)
    db = get_supabase_client()

    try:
        rows = db.get_open_tickets_with_deadline()
    except Exception as e:
        raise DatabaseError(
            "Failed to load open tickets",
            table=TICKETS_TABLE,
            operation="select",
            original_error=str(e)
        ) from e

    try:
        rules = load_escalation_rules()
    except Exception as e:
        raise DatabaseError(
            "Failed to load escalation rules",
            table=ESCALATION_RULES_TABLE,
            operation="select",
            original_error=str(e)
        ) from e

    for row in rows:
        ticket_id = row.get("id")
        summary.processed += 1

        try:
            ticket = TicketSLAView.model_validate(row)
            result = check_and_escalate(ticket, now=now, rules=rules)
        except Exception as e:
            summary.failed += 1
            summary.errors.append({"ticket_id": ticket_id, "error": str(e)})
            logger.error(f"SLA sweep failed for ticket {ticket_id}: {e}", exc_info=True)
            continue

        if result.conflict:
            summary.conflicts += 1
        if result.status_changed:
            summary.status_changes += 1
        if result.escalation_triggered:
            summary.escalated += 1
            summary.notifications_sent += result.notifications_sent

    summary.finished_at = datetime.now(timezone.utc)

    logger.info(
        f"SLA sweep {summary.status}: {summary.processed} processed, "
        f"{summary.status_changes} changed, {summary.escalated} escalated, "
        f"{summary.notifications_sent} notifications, {summary.failed} failed"
    )
    return summary
