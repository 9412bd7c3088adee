"""
Escalation Detector for the SLA engine.

Decides, exactly once per threshold crossing, whether a status change
should notify people.

State machine (forward crossings only):
    on_track/absent -> warning -> critical -> breached

Key Rules:
- Escalate only into warning/critical/breached, and only when the new
  status is strictly worse than the previous one (or the previous one
  was on_track/absent)
- Repeating the same tier or moving to a better tier never escalates
- The rule whose threshold_percent matches the new tier (75/90/100)
  decides who is notified; no matching active rule disables that tier
- The assigned technician is always notified in addition to the rule's roles
- A failed notification for one recipient never blocks the others and
  never rolls back the status update
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from pydantic import ValidationError

from sla_engine.core.config import settings
from sla_engine.core.database import get_supabase_client
from sla_engine.models.enums import SLAStatus
from sla_engine.models.schemas import EscalationRule, TicketSLAView
from sla_engine.services.notifications import notification_service, unique_recipients
from sla_engine.services.sla_status import evaluate_ticket_status
from sla_engine.services.working_calendar import WorkingCalendar


logger = logging.getLogger(__name__)

ESCALATING_STATUSES = (SLAStatus.WARNING, SLAStatus.CRITICAL, SLAStatus.BREACHED)


@dataclass
class EscalationDecision:
    """Whether a transition escalates, and under which rule."""
    escalate: bool
    rule: Optional[EscalationRule] = None


@dataclass
class EscalationResult:
    """Outcome of checking one ticket."""
    ticket_id: str
    previous_status: Optional[SLAStatus]
    new_status: SLAStatus
    status_changed: bool = False
    escalation_triggered: bool = False
    notifications_sent: int = 0
    conflict: bool = False
    failed_recipients: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "ticket_id": self.ticket_id,
            "previous_status": self.previous_status.value if self.previous_status else None,
            "new_status": self.new_status.value,
            "status_changed": self.status_changed,
            "escalation_triggered": self.escalation_triggered,
            "notifications_sent": self.notifications_sent,
            "conflict": self.conflict,
        }


# ==========================================
# DECISION
# ==========================================

def should_escalate(previous: Optional[SLAStatus], new: SLAStatus) -> bool:
    """
    Whether moving from `previous` to `new` is a forward threshold crossing.

    Statuses outside the on_track..breached order (no_sla, completed,
    unknown) count as absent.
    """
    if new not in ESCALATING_STATUSES:
        return False

    if previous is None or previous.severity < 0 or previous == SLAStatus.ON_TRACK:
        return True

    return new.severity > previous.severity


def threshold_for(status: SLAStatus) -> Optional[int]:
    """Threshold percent an escalating status corresponds to."""
    warning, critical, breached = settings.sla_thresholds
    return {
        SLAStatus.WARNING: warning,
        SLAStatus.CRITICAL: critical,
        SLAStatus.BREACHED: breached,
    }.get(status)


def find_matching_rule(
    rules: list[EscalationRule],
    status: SLAStatus
) -> Optional[EscalationRule]:
    """First active rule whose threshold_percent matches the status tier."""
    threshold = threshold_for(status)
    if threshold is None:
        return None

    for rule in rules:
        if rule.is_active and rule.threshold_percent == threshold:
            return rule
    return None


def load_escalation_rules() -> list[EscalationRule]:
    """Active escalation rules; invalid rows are skipped."""
    rules = []
    for row in get_supabase_client().get_active_escalation_rules():
        try:
            rules.append(EscalationRule.model_validate(row))
        except ValidationError as e:
            logger.warning(f"Ignoring invalid escalation rule {row.get('id')}: {e}")
    return rules


def detect(
    ticket_id: str,
    previous: Optional[SLAStatus],
    new: SLAStatus,
    rules: Optional[list[EscalationRule]] = None
) -> EscalationDecision:
    """
    Decide whether a status transition escalates.

    Args:
        ticket_id: Ticket being evaluated (for logging)
        previous: Stored status before the transition (None if absent)
        new: Newly computed status
        rules: Active rules (loaded when not supplied)

    Returns:
        EscalationDecision; escalate is False when no rule matches
    """
    if not should_escalate(previous, new):
        return EscalationDecision(escalate=False)

    if rules is None:
        rules = load_escalation_rules()

    rule = find_matching_rule(rules, new)
    if rule is None:
        logger.info(
            f"No active escalation rule for {new.value} "
            f"({threshold_for(new)}%), ticket {ticket_id} not escalated"
        )
        return EscalationDecision(escalate=False)

    return EscalationDecision(escalate=True, rule=rule)


# ==========================================
# SIDE EFFECTS
# ==========================================

def get_users_to_notify(rule: EscalationRule, assigned_user_id: Optional[str] = None) -> list[str]:
    """Active users holding one of the rule's roles, plus the assignee."""
    role_users = get_supabase_client().get_users_with_roles(rule.notify_roles)
    return unique_recipients(role_users, [assigned_user_id])


def hours_remaining(due_at: Optional[datetime], now: datetime) -> int:
    """Whole hours until due; 0 when past due or no deadline."""
    if due_at is None:
        return 0
    seconds = (due_at - now).total_seconds()
    return max(0, int(seconds // 3600))


def trigger_escalation(
    ticket: TicketSLAView,
    rule: EscalationRule,
    now: Optional[datetime] = None
) -> tuple[int, list[str]]:
    """
    Notify everyone an escalation rule targets for a ticket.

    Returns:
        Tuple of (notifications sent, recipients that failed)
    """
    now = now or datetime.now(timezone.utc)
    recipients = get_users_to_notify(rule, ticket.assigned_user_id)

    if not recipients:
        logger.warning(f"Escalation rule '{rule.name}' for ticket {ticket.id} has no recipients")
        return 0, []

    batch = notification_service.notify_sla_warning(
        recipients,
        ticket_title=ticket.title,
        ticket_id=ticket.id,
        hours_remaining=hours_remaining(ticket.due_at, now),
    )
    return batch.sent_count, list(batch.failed)


def check_and_escalate(
    ticket: TicketSLAView,
    now: Optional[datetime] = None,
    rules: Optional[list[EscalationRule]] = None,
    calendar: Optional[WorkingCalendar] = None
) -> EscalationResult:
    """
    Re-classify one ticket, persist a changed status, and escalate on a
    forward threshold crossing.

    The status write is conditional on the stored value; if a concurrent
    writer changed it first, nothing is escalated.

    Args:
        ticket: Ticket to check
        now: Evaluation time (defaults to the current UTC time)
        rules: Active escalation rules (loaded on demand when not supplied)
        calendar: Pre-resolved branch calendar (working-hours mode)

    Returns:
        EscalationResult
    """
    now = now or datetime.now(timezone.utc)
    previous = ticket.stored_sla_status
    new = evaluate_ticket_status(ticket, now=now, calendar=calendar)

    result = EscalationResult(ticket_id=ticket.id, previous_status=previous, new_status=new)

    if new == previous:
        return result

    updated = get_supabase_client().update_sla_status(
        ticket.id,
        new.value,
        expected_status=ticket.sla_status,
        expected_due_at=ticket.due_at,
        expected_paused=ticket.is_paused,
    )
    if not updated:
        logger.warning(
            f"Ticket {ticket.id} changed concurrently "
            f"(expected status {ticket.sla_status}, due {ticket.due_at}), skipping"
        )
        result.conflict = True
        return result

    result.status_changed = True
    logger.info(
        f"Ticket {ticket.id} SLA status {ticket.sla_status or 'none'} -> {new.value}"
    )

    decision = detect(ticket.id, previous, new, rules)
    if not decision.escalate:
        return result

    sent, failed = trigger_escalation(ticket, decision.rule, now)
    result.escalation_triggered = True
    result.notifications_sent = sent
    result.failed_recipients = failed

    logger.info(
        f"🚨 Escalated ticket {ticket.id} to {new.value} via rule '{decision.rule.name}': "
        f"{sent} notified, {len(failed)} failed"
    )
    return result
