"""
Notification Service for the SLA engine.

Enqueues in-app notification records in the `notifications` table.
Delivery (push, email, in-app rendering) is owned by the surrounding
application; from here a notification is fire-and-forget.

Provides:
- SLA warning notifications for escalations
- Job paused / resumed notifications for the ticket's creator and assignee
- Per-recipient failure isolation: one failed insert never blocks the others
"""
import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

from sla_engine.core.database import get_supabase_client
from sla_engine.models.enums import NotificationType, PauseReasonCategory


logger = logging.getLogger(__name__)


@dataclass
class NotificationBatch:
    """Outcome of sending one notification to several recipients."""
    sent: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)  # user_id -> error

    @property
    def sent_count(self) -> int:
        return len(self.sent)


def unique_recipients(*groups: Iterable[Optional[str]]) -> list[str]:
    """Flatten recipient groups, dropping blanks and duplicates, keeping order."""
    seen: list[str] = []
    for group in groups:
        for user_id in group:
            if user_id and user_id not in seen:
                seen.append(user_id)
    return seen


class NotificationService:
    """
    Writes notification records through the Supabase client.
    """

    def enqueue(
        self,
        user_id: str,
        notification_type: NotificationType,
        title: str,
        message: Optional[str] = None,
        ticket_id: Optional[str] = None
    ) -> None:
        """
        Enqueue one notification. Raises on failure.
        """
        db = get_supabase_client()
        db.insert_notification(
            user_id=user_id,
            notification_type=notification_type.value,
            title=title,
            message=message,
            ticket_id=ticket_id,
        )

    def enqueue_many(
        self,
        user_ids: Iterable[str],
        notification_type: NotificationType,
        title: str,
        message: Optional[str] = None,
        ticket_id: Optional[str] = None
    ) -> NotificationBatch:
        """
        Enqueue the same notification for several users.

        Failures are logged per recipient and reported in the batch;
        they are never raised.
        """
        batch = NotificationBatch()

        for user_id in user_ids:
            try:
                self.enqueue(user_id, notification_type, title, message, ticket_id)
                batch.sent.append(user_id)
            except Exception as e:
                logger.error(
                    f"Failed to notify user {user_id} ({notification_type.value}) "
                    f"for ticket {ticket_id}: {e}"
                )
                batch.failed[user_id] = str(e)

        return batch

    # ==========================================
    # SLA
    # ==========================================

    def notify_sla_warning(
        self,
        user_ids: Iterable[str],
        ticket_title: str,
        ticket_id: str,
        hours_remaining: int
    ) -> NotificationBatch:
        """Tell recipients a ticket crossed an SLA threshold."""
        return self.enqueue_many(
            user_ids,
            NotificationType.SLA_WARNING,
            title=f"SLA deadline approaching! {hours_remaining} hours remaining",
            message=f"{ticket_title} (#{ticket_id})",
            ticket_id=ticket_id,
        )

    # ==========================================
    # JOB CONTROL
    # ==========================================

    def notify_ticket_paused(
        self,
        ticket: dict,
        reason_category: PauseReasonCategory
    ) -> NotificationBatch:
        """Tell the creator and assignee that a job was paused."""
        recipients = unique_recipients([ticket.get("created_by"), ticket.get("assigned_user_id")])
        return self.enqueue_many(
            recipients,
            NotificationType.JOB_PAUSED,
            title="Job paused",
            message=f'Job "{ticket.get("title", "")}" was paused: {reason_category.label}',
            ticket_id=ticket.get("id"),
        )

    def notify_ticket_resumed(self, ticket: dict) -> NotificationBatch:
        """Tell the creator and assignee that a job was resumed."""
        recipients = unique_recipients([ticket.get("created_by"), ticket.get("assigned_user_id")])
        return self.enqueue_many(
            recipients,
            NotificationType.JOB_RESUMED,
            title="Job resumed",
            message=f'Job "{ticket.get("title", "")}" has been resumed',
            ticket_id=ticket.get("id"),
        )


# Global notification service instance
notification_service = NotificationService()
