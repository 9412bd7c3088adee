"""
Tests for the Escalation Detector.

Covers:
- Forward-only crossing matrix
- Rule matching by threshold tier
- Exactly-once escalation over a rising ticket
- Recipients (roles + assignee, inactive users excluded)
- Failure isolation and conditional status writes
"""
import pytest
from datetime import datetime, timedelta, timezone

from sla_engine.models.enums import PauseReasonCategory, SLAStatus
from sla_engine.models.schemas import EscalationRule, TicketSLAView
from sla_engine.services.escalation import (
    check_and_escalate,
    detect,
    find_matching_rule,
    get_users_to_notify,
    hours_remaining,
    load_escalation_rules,
    should_escalate,
)
from sla_engine.services.pause_ledger import pause_ticket, resume_ticket


CREATED = datetime(2025, 4, 18, 10, 0, tzinfo=timezone.utc)
DUE = CREATED + timedelta(minutes=100)


def rule(threshold: int, roles=None, active: bool = True) -> EscalationRule:
    return EscalationRule(
        id=f"rule-{threshold}",
        name=f"SLA {threshold}%",
        threshold_percent=threshold,
        notify_roles=roles or ["manager"],
        is_active=active,
    )


def reload(mock_data, ticket_id: str) -> TicketSLAView:
    row = next(t for t in mock_data["maintenance_requests"] if t["id"] == ticket_id)
    return TicketSLAView.model_validate(row)


class TestShouldEscalate:

    @pytest.mark.unit
    @pytest.mark.parametrize("previous, new, expected", [
        (None, SLAStatus.WARNING, True),
        (None, SLAStatus.BREACHED, True),
        (SLAStatus.ON_TRACK, SLAStatus.WARNING, True),
        (SLAStatus.ON_TRACK, SLAStatus.CRITICAL, True),
        (SLAStatus.WARNING, SLAStatus.CRITICAL, True),
        (SLAStatus.CRITICAL, SLAStatus.BREACHED, True),
        (SLAStatus.WARNING, SLAStatus.BREACHED, True),
        (SLAStatus.NO_SLA, SLAStatus.WARNING, True),
        (SLAStatus.WARNING, SLAStatus.WARNING, False),
        (SLAStatus.BREACHED, SLAStatus.BREACHED, False),
        (SLAStatus.BREACHED, SLAStatus.WARNING, False),
        (SLAStatus.CRITICAL, SLAStatus.WARNING, False),
        (None, SLAStatus.ON_TRACK, False),
        (SLAStatus.WARNING, SLAStatus.ON_TRACK, False),
        (SLAStatus.CRITICAL, SLAStatus.COMPLETED, False),
        (None, SLAStatus.NO_SLA, False),
    ])
    def test_forward_crossings_only(self, previous, new, expected):
        assert should_escalate(previous, new) is expected


class TestRuleMatching:

    @pytest.mark.unit
    def test_rule_matched_by_tier_threshold(self):
        rules = [rule(75), rule(90), rule(100)]

        assert find_matching_rule(rules, SLAStatus.WARNING).threshold_percent == 75
        assert find_matching_rule(rules, SLAStatus.CRITICAL).threshold_percent == 90
        assert find_matching_rule(rules, SLAStatus.BREACHED).threshold_percent == 100
        assert find_matching_rule(rules, SLAStatus.ON_TRACK) is None

    @pytest.mark.unit
    def test_inactive_rule_never_matches(self):
        assert find_matching_rule([rule(90, active=False)], SLAStatus.CRITICAL) is None

    @pytest.mark.unit
    def test_no_rule_for_tier_disables_escalation(self, caplog):
        with caplog.at_level("INFO"):
            decision = detect("ticket-1", SLAStatus.ON_TRACK, SLAStatus.WARNING, rules=[rule(100)])

        assert decision.escalate is False
        assert "No active escalation rule" in caplog.text

    @pytest.mark.unit
    def test_detect_returns_rule(self):
        decision = detect("ticket-1", SLAStatus.WARNING, SLAStatus.CRITICAL, rules=[rule(75), rule(90)])

        assert decision.escalate is True
        assert decision.rule.id == "rule-90"

    @pytest.mark.integration
    def test_load_rules_skips_invalid_rows(self, mock_data, create_escalation_rules):
        create_escalation_rules()
        mock_data["escalation_rules"].append(
            {"id": "broken", "name": "Broken", "threshold_percent": 80.5, "is_active": True}
        )

        rules = load_escalation_rules()

        assert [r.threshold_percent for r in rules] == [75, 90, 100]


class TestRecipients:

    @pytest.mark.integration
    def test_roles_plus_assignee_without_duplicates(self, create_profile):
        create_profile(role="manager", user_id="manager-1")
        create_profile(role="manager", user_id="manager-2", is_active=False)
        create_profile(role="technician", user_id="tech-1")
        create_profile(role="admin", user_id="admin-1")

        users = get_users_to_notify(rule(90, roles=["manager", "technician"]), "tech-1")

        assert users == ["manager-1", "tech-1"]

    @pytest.mark.integration
    def test_no_assignee(self, create_profile):
        create_profile(role="manager", user_id="manager-1")

        assert get_users_to_notify(rule(75), None) == ["manager-1"]

    @pytest.mark.unit
    def test_hours_remaining(self):
        assert hours_remaining(DUE, DUE - timedelta(hours=2, minutes=30)) == 2
        assert hours_remaining(DUE, DUE + timedelta(minutes=5)) == 0
        assert hours_remaining(None, DUE) == 0


class TestCheckAndEscalate:

    @pytest.fixture
    def setup(self, create_ticket, create_escalation_rules, create_profile):
        create_escalation_rules()
        create_profile(role="manager", user_id="manager-1")
        return create_ticket(created_at=CREATED, due_at=DUE, sla_status="on_track")

    @pytest.mark.integration
    def test_each_threshold_escalates_exactly_once(self, setup, mock_data):
        escalations = []
        for minute in (10, 80, 85, 95, 98, 110, 300):
            ticket = reload(mock_data, setup["id"])
            result = check_and_escalate(ticket, now=CREATED + timedelta(minutes=minute))
            if result.escalation_triggered:
                escalations.append(result.new_status)

        assert escalations == [SLAStatus.WARNING, SLAStatus.CRITICAL, SLAStatus.BREACHED]
        assert setup["sla_status"] == "breached"
        # manager + assignee for each tier
        assert len(mock_data["notifications"]) == 6
        assert all(n["type"] == "sla_warning" for n in mock_data["notifications"])

    @pytest.mark.integration
    def test_notification_content(self, setup, mock_data):
        ticket = reload(mock_data, setup["id"])

        check_and_escalate(ticket, now=CREATED + timedelta(minutes=80))

        notification = mock_data["notifications"][0]
        assert notification["title"] == "SLA deadline approaching! 0 hours remaining"
        assert notification["message"] == f"Air conditioner leaking (#{setup['id']})"
        assert notification["request_id"] == setup["id"]

    @pytest.mark.integration
    def test_skipping_tiers_escalates_once_at_the_new_tier(self, setup, mock_data):
        ticket = reload(mock_data, setup["id"])

        result = check_and_escalate(ticket, now=CREATED + timedelta(minutes=150))

        assert result.new_status == SLAStatus.BREACHED
        assert result.escalation_triggered is True
        assert result.notifications_sent == 2

    @pytest.mark.integration
    def test_regression_updates_status_without_escalating(self, create_ticket, create_escalation_rules, mock_data):
        create_escalation_rules()
        # Deadline extended after a long pause: breached -> warning
        ticket_row = create_ticket(created_at=CREATED, due_at=DUE, sla_status="breached")

        result = check_and_escalate(reload(mock_data, ticket_row["id"]), now=CREATED + timedelta(minutes=80))

        assert result.status_changed is True
        assert result.escalation_triggered is False
        assert ticket_row["sla_status"] == "warning"
        assert mock_data["notifications"] == []

    @pytest.mark.integration
    def test_unchanged_status_is_not_written(self, setup, mock_data, mock_db):
        mock_db.fail("maintenance_requests")  # any write would raise
        ticket = reload(mock_data, setup["id"])

        result = check_and_escalate(ticket, now=CREATED + timedelta(minutes=10))

        assert result.status_changed is False
        assert result.new_status == SLAStatus.ON_TRACK

    @pytest.mark.integration
    def test_completed_ticket_moves_to_completed_silently(self, create_ticket, create_escalation_rules, mock_data):
        create_escalation_rules()
        row = create_ticket(created_at=CREATED, due_at=DUE, status="completed", sla_status="critical")

        result = check_and_escalate(reload(mock_data, row["id"]), now=DUE + timedelta(hours=1))

        assert result.new_status == SLAStatus.COMPLETED
        assert result.escalation_triggered is False
        assert row["sla_status"] == "completed"

    @pytest.mark.edge
    def test_concurrent_status_change_is_a_conflict(self, setup, mock_data):
        ticket = reload(mock_data, setup["id"])
        # Another sweep recorded the transition after we read the row
        setup["sla_status"] = "warning"

        result = check_and_escalate(ticket, now=CREATED + timedelta(minutes=80))

        assert result.conflict is True
        assert result.escalation_triggered is False
        assert mock_data["notifications"] == []

    @pytest.mark.edge
    def test_row_read_before_resume_does_not_escalate(self, setup, mock_data):
        stale = reload(mock_data, setup["id"])
        # Paused and resumed after the sweep read the row: due moves out by 190 min
        pause_ticket(setup["id"], "tech-1", PauseReasonCategory.WAITING_PARTS, now=CREATED + timedelta(minutes=10))
        resume_ticket(setup["id"], "tech-1", now=CREATED + timedelta(minutes=200))

        result = check_and_escalate(stale, now=CREATED + timedelta(minutes=201))

        assert result.new_status == SLAStatus.BREACHED
        assert result.conflict is True
        assert result.escalation_triggered is False
        assert setup["sla_status"] == "on_track"
        assert [n for n in mock_data["notifications"] if n["type"] == "sla_warning"] == []

        fresh = check_and_escalate(reload(mock_data, setup["id"]), now=CREATED + timedelta(minutes=201))
        assert fresh.new_status == SLAStatus.ON_TRACK

    @pytest.mark.edge
    def test_row_read_before_pause_does_not_escalate(self, setup, mock_data):
        stale = reload(mock_data, setup["id"])
        pause_ticket(setup["id"], "tech-1", PauseReasonCategory.WEATHER, now=CREATED + timedelta(minutes=10))

        result = check_and_escalate(stale, now=CREATED + timedelta(minutes=80))

        assert result.conflict is True
        assert result.escalation_triggered is False
        assert setup["sla_status"] == "on_track"

    @pytest.mark.edge
    def test_one_failed_recipient_does_not_block_others(self, setup, mock_data, mock_db):
        mock_db.fail("notifications", stage="insert", when=lambda payload: payload["user_id"] == "tech-1")
        ticket = reload(mock_data, setup["id"])

        result = check_and_escalate(ticket, now=CREATED + timedelta(minutes=80))

        assert result.escalation_triggered is True
        assert result.notifications_sent == 1
        assert result.failed_recipients == ["tech-1"]
        assert setup["sla_status"] == "warning"
        assert [n["user_id"] for n in mock_data["notifications"]] == ["manager-1"]

    @pytest.mark.edge
    def test_only_breach_rule_configured(self, create_ticket, create_escalation_rules, create_profile, mock_data):
        create_escalation_rules(thresholds=(100,))
        create_profile(role="manager", user_id="manager-1")
        row = create_ticket(created_at=CREATED, due_at=DUE, sla_status="on_track")

        warning = check_and_escalate(reload(mock_data, row["id"]), now=CREATED + timedelta(minutes=80))
        breached = check_and_escalate(reload(mock_data, row["id"]), now=CREATED + timedelta(minutes=120))

        assert warning.status_changed is True
        assert warning.escalation_triggered is False
        assert breached.escalation_triggered is True

    @pytest.mark.edge
    def test_paused_ticket_does_not_escalate_while_paused(self, create_ticket, create_escalation_rules, mock_data):
        create_escalation_rules()
        row = create_ticket(
            created_at=CREATED, due_at=DUE, sla_status="on_track",
            is_paused=True, sla_paused_at=(CREATED + timedelta(minutes=30)).isoformat()
        )

        result = check_and_escalate(reload(mock_data, row["id"]), now=DUE + timedelta(hours=5))

        assert result.new_status == SLAStatus.ON_TRACK
        assert result.escalation_triggered is False
