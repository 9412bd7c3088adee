"""
Supabase database client management.

Wraps the tables the SLA engine reads and writes:
- maintenance_requests: tickets (timestamps, status, SLA cache, pause fields)
- job_pauses: append-only pause records
- branch_working_hours / holidays: working calendar
- escalation_rules / profiles: who to notify at each threshold
- notifications: in-app notification sink

Every write that depends on the ticket's current state is issued as a
single conditional UPDATE; an empty result means the precondition no
longer held and the caller reports a conflict.
"""
from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any, Optional

from supabase import create_client, Client

from .config import settings
from .exceptions import CalendarLookupError


TICKETS_TABLE = "maintenance_requests"
PAUSES_TABLE = "job_pauses"
WORKING_HOURS_TABLE = "branch_working_hours"
HOLIDAYS_TABLE = "holidays"
ESCALATION_RULES_TABLE = "escalation_rules"
PROFILES_TABLE = "profiles"
NOTIFICATIONS_TABLE = "notifications"

OPEN_TICKET_STATUSES = ["pending", "assigned", "in_progress"]
CLOSED_TICKET_STATUSES = ["completed", "cancelled"]

TICKET_COLUMNS = (
    "id, title, created_at, due_at, status, sla_status, sla_mode, sla_hours, "
    "branch_id, is_paused, sla_paused_at, sla_paused_duration, pause_count, "
    "assigned_user_id, created_by"
)

# PostgREST caps a single response; page through larger result sets
PAGE_SIZE = 500


def to_iso(value: datetime) -> str:
    """Serialize a timestamp as ISO-8601 UTC (naive values are taken as UTC)."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class SupabaseClient:
    """
    Singleton wrapper for Supabase client.
    Provides the ticket, calendar, rule and notification operations
    consumed by the SLA services.
    """

    _instance: Optional["SupabaseClient"] = None
    _client: Optional[Client] = None

    def __new__(cls) -> "SupabaseClient":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._client is None:
            self._client = create_client(
                settings.supabase_url,
                settings.supabase_key
            )

    @property
    def client(self) -> Client:
        """Get the Supabase client instance."""
        if self._client is None:
            raise RuntimeError("Supabase client not initialized")
        return self._client

    # ==========================================
    # TICKETS
    # ==========================================

    def get_open_tickets_with_deadline(self) -> list[dict]:
        """
        Fetch every open ticket that has a deadline.

        Open = pending/assigned/in_progress. Pages through the table so
        large back offices are not truncated at the API row cap.
        """
        tickets: list[dict] = []
        offset = 0

        while True:
            response = (
                self.client.table(TICKETS_TABLE)
                .select(TICKET_COLUMNS)
                .in_("status", OPEN_TICKET_STATUSES)
                .not_.is_("due_at", "null")
                .order("id")
                .range(offset, offset + PAGE_SIZE - 1)
                .execute()
            )
            page = response.data or []
            tickets.extend(page)

            if len(page) < PAGE_SIZE:
                break
            offset += PAGE_SIZE

        return tickets

    def get_ticket(self, ticket_id: str) -> Optional[dict]:
        """Fetch a single ticket's SLA-relevant columns."""
        response = (
            self.client.table(TICKETS_TABLE)
            .select(TICKET_COLUMNS)
            .eq("id", ticket_id)
            .execute()
        )
        return response.data[0] if response.data else None

    def update_sla_status(
        self,
        ticket_id: str,
        new_status: str,
        expected_status: Optional[str],
        expected_due_at: Optional[datetime],
        expected_paused: bool
    ) -> bool:
        """
        Persist a new cached SLA status.

        Applied only while the stored status, due_at and pause flag still
        equal the values the new status was computed from (NULL-aware).
        Two racing sweeps cannot both record the same transition, and a
        pause or resume landing after the row was read voids the write.
        Returns whether a row was updated.
        """
        query = (
            self.client.table(TICKETS_TABLE)
            .update({"sla_status": new_status})
            .eq("id", ticket_id)
        )
        if expected_status is None:
            query = query.is_("sla_status", "null")
        else:
            query = query.eq("sla_status", expected_status)

        if expected_due_at is None:
            query = query.is_("due_at", "null")
        else:
            query = query.eq("due_at", to_iso(expected_due_at))

        if expected_paused:
            query = query.eq("is_paused", True)
        else:
            query = query.not_.is_("is_paused", "true")

        response = query.execute()
        return bool(response.data)

    def claim_pause(self, ticket_id: str, paused_at: datetime, pause_count: int) -> bool:
        """Mark an open, unpaused ticket as paused. Returns False on conflict."""
        response = (
            self.client.table(TICKETS_TABLE)
            .update({
                "is_paused": True,
                "sla_paused_at": to_iso(paused_at),
                "pause_count": pause_count,
            })
            .eq("id", ticket_id)
            .not_.is_("is_paused", "true")
            .not_.in_("status", CLOSED_TICKET_STATUSES)
            .execute()
        )
        return bool(response.data)

    def release_pause(self, ticket_id: str, fields: dict[str, Any]) -> bool:
        """
        Apply resume fields to a ticket that is still paused.

        `fields` may carry a new due_at and accumulated paused minutes.
        Returns False if the ticket is no longer paused.
        """
        payload = dict(fields)
        payload.update({"is_paused": False, "sla_paused_at": None})

        response = (
            self.client.table(TICKETS_TABLE)
            .update(payload)
            .eq("id", ticket_id)
            .eq("is_paused", True)
            .execute()
        )
        return bool(response.data)

    # ==========================================
    # PAUSE RECORDS (append-only)
    # ==========================================

    def insert_pause_record(self, record: dict) -> dict:
        """Create a pause record."""
        response = self.client.table(PAUSES_TABLE).insert(record).execute()
        return response.data[0] if response.data else {}

    def get_active_pauses(self, ticket_id: str) -> list[dict]:
        """Pause records of a ticket that have not been resumed."""
        response = (
            self.client.table(PAUSES_TABLE)
            .select("*")
            .eq("request_id", ticket_id)
            .is_("resumed_at", "null")
            .execute()
        )
        return response.data or []

    def close_pause_record(
        self,
        pause_id: str,
        resumed_at: datetime,
        resumed_by: str,
        notes: Optional[str]
    ) -> bool:
        """Close an active pause record. Returns False if it was already closed."""
        response = (
            self.client.table(PAUSES_TABLE)
            .update({
                "resumed_at": to_iso(resumed_at),
                "resumed_by": resumed_by,
                "notes": notes,
            })
            .eq("id", pause_id)
            .is_("resumed_at", "null")
            .execute()
        )
        return bool(response.data)

    def get_pause_history(self, ticket_id: str) -> list[dict]:
        """All pause records of a ticket, newest first."""
        response = (
            self.client.table(PAUSES_TABLE)
            .select("*")
            .eq("request_id", ticket_id)
            .order("paused_at", desc=True)
            .execute()
        )
        return response.data or []

    # ==========================================
    # WORKING CALENDAR
    # ==========================================

    def get_branch_working_hours(self, branch_id: str) -> list[dict]:
        """Weekday schedule rows configured for a branch."""
        try:
            response = (
                self.client.table(WORKING_HOURS_TABLE)
                .select("day_of_week, open_time, close_time, is_closed")
                .eq("branch_id", branch_id)
                .order("day_of_week")
                .execute()
            )
        except Exception as e:
            raise CalendarLookupError(
                "Failed to load branch working hours",
                branch_id=branch_id,
                original_error=str(e)
            ) from e
        return response.data or []

    def get_holidays(
        self,
        branch_id: Optional[str],
        start_date: date,
        end_date: date
    ) -> list[dict]:
        """Branch-specific and global holidays dated within [start_date, end_date]."""
        try:
            query = self.client.table(HOLIDAYS_TABLE).select("date, branch_id, is_recurring, name")
            query = self._holiday_scope(query, branch_id)
            response = (
                query
                .gte("date", start_date.isoformat())
                .lte("date", end_date.isoformat())
                .execute()
            )
        except Exception as e:
            raise CalendarLookupError(
                "Failed to load holidays",
                branch_id=branch_id,
                original_error=str(e)
            ) from e
        return response.data or []

    def get_recurring_holidays(self, branch_id: Optional[str]) -> list[dict]:
        """Holidays flagged as repeating on the same month/day every year."""
        try:
            query = self.client.table(HOLIDAYS_TABLE).select("date, branch_id, is_recurring, name")
            query = self._holiday_scope(query, branch_id)
            response = query.eq("is_recurring", True).execute()
        except Exception as e:
            raise CalendarLookupError(
                "Failed to load recurring holidays",
                branch_id=branch_id,
                original_error=str(e)
            ) from e
        return response.data or []

    @staticmethod
    def _holiday_scope(query, branch_id: Optional[str]):
        # branch_id NULL means the holiday applies to every branch
        if branch_id:
            return query.or_(f"branch_id.eq.{branch_id},branch_id.is.null")
        return query.is_("branch_id", "null")

    # ==========================================
    # ESCALATION RULES & USERS
    # ==========================================

    def get_active_escalation_rules(self) -> list[dict]:
        """Active escalation rules ordered by threshold."""
        response = (
            self.client.table(ESCALATION_RULES_TABLE)
            .select("*")
            .eq("is_active", True)
            .order("threshold_percent")
            .execute()
        )
        return response.data or []

    def get_users_with_roles(self, roles: list[str]) -> list[str]:
        """IDs of active users holding any of the given roles."""
        if not roles:
            return []

        response = (
            self.client.table(PROFILES_TABLE)
            .select("*")
            .in_("role", roles)
            .execute()
        )
        return [
            row["id"]
            for row in (response.data or [])
            if row.get("id") and row.get("is_active", True) is not False
        ]

    # ==========================================
    # NOTIFICATIONS
    # ==========================================

    def insert_notification(
        self,
        user_id: str,
        notification_type: str,
        title: str,
        message: Optional[str],
        ticket_id: Optional[str]
    ) -> dict:
        """Enqueue an in-app notification record."""
        response = self.client.table(NOTIFICATIONS_TABLE).insert({
            "user_id": user_id,
            "type": notification_type,
            "title": title,
            "message": message,
            "request_id": ticket_id,
        }).execute()
        return response.data[0] if response.data else {}


@lru_cache
def get_supabase_client() -> SupabaseClient:
    """Get the singleton Supabase client instance."""
    return SupabaseClient()
