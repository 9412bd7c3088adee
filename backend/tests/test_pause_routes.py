"""
Tests for Job Pause Routes (/api/tickets/{id}/pause|resume|pauses).

Precondition failures surface as 409 with a machine-readable reason.
"""
import pytest
from datetime import datetime, timedelta, timezone


@pytest.fixture
def ticket(create_ticket):
    now = datetime.now(timezone.utc)
    return create_ticket(created_at=now - timedelta(hours=1), due_at=now + timedelta(hours=3))


class TestPauseEndpoint:

    @pytest.mark.unit
    def test_pause_success(self, client, ticket, mock_data):
        response = client.post(f"/api/tickets/{ticket['id']}/pause", json={
            "actor_id": "tech-1",
            "reason_category": "waiting_parts",
            "notes": "Compressor on order",
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["pause"]["ticket_id"] == ticket["id"]
        assert data["pause"]["reason_category"] == "waiting_parts"
        assert data["pause"]["reason_label"] == "Waiting for parts"
        assert data["pause"]["is_active"] is True
        assert ticket["is_paused"] is True
        assert len(mock_data["job_pauses"]) == 1

    @pytest.mark.unit
    def test_pause_twice_conflicts(self, client, ticket):
        body = {"actor_id": "tech-1", "reason_category": "weather"}
        client.post(f"/api/tickets/{ticket['id']}/pause", json=body)

        response = client.post(f"/api/tickets/{ticket['id']}/pause", json=body)

        assert response.status_code == 409
        assert response.json()["error"] == "AlreadyPausedError"
        assert response.json()["details"]["reason"] == "already_paused"

    @pytest.mark.unit
    def test_pause_closed_ticket(self, client, create_ticket):
        now = datetime.now(timezone.utc)
        closed = create_ticket(created_at=now - timedelta(hours=1), due_at=now, status="cancelled")

        response = client.post(f"/api/tickets/{closed['id']}/pause", json={
            "actor_id": "tech-1", "reason_category": "weather"
        })

        assert response.status_code == 409
        assert response.json()["details"]["reason"] == "ticket_closed"

    @pytest.mark.unit
    def test_pause_unknown_ticket(self, client):
        response = client.post("/api/tickets/missing/pause", json={
            "actor_id": "tech-1", "reason_category": "weather"
        })

        assert response.status_code == 404

    @pytest.mark.unit
    def test_pause_invalid_category(self, client, ticket):
        response = client.post(f"/api/tickets/{ticket['id']}/pause", json={
            "actor_id": "tech-1", "reason_category": "lunch"
        })

        assert response.status_code == 422


class TestResumeEndpoint:

    @pytest.mark.unit
    def test_resume_success(self, client, ticket):
        client.post(f"/api/tickets/{ticket['id']}/pause", json={
            "actor_id": "tech-1", "reason_category": "waiting_vendor"
        })

        response = client.post(f"/api/tickets/{ticket['id']}/resume", json={
            "actor_id": "tech-1", "notes": "Vendor on site"
        })

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["ticket_id"] == ticket["id"]
        assert data["paused_minutes"] >= 0
        assert data["new_due_at"] is not None
        assert ticket["is_paused"] is False

    @pytest.mark.unit
    def test_resume_twice_conflicts(self, client, ticket):
        client.post(f"/api/tickets/{ticket['id']}/pause", json={
            "actor_id": "tech-1", "reason_category": "weather"
        })
        client.post(f"/api/tickets/{ticket['id']}/resume", json={"actor_id": "tech-1"})
        due_after_first = ticket["due_at"]

        response = client.post(f"/api/tickets/{ticket['id']}/resume", json={"actor_id": "tech-1"})

        assert response.status_code == 409
        assert response.json()["details"]["reason"] == "no_active_pause"
        assert ticket["due_at"] == due_after_first

    @pytest.mark.unit
    def test_resume_requires_actor(self, client, ticket):
        response = client.post(f"/api/tickets/{ticket['id']}/resume", json={})

        assert response.status_code == 422


class TestPauseHistoryEndpoint:

    @pytest.mark.unit
    def test_history_lists_all_records(self, client, ticket):
        for category in ("weather", "waiting_approval"):
            client.post(f"/api/tickets/{ticket['id']}/pause", json={
                "actor_id": "tech-1", "reason_category": category
            })
            client.post(f"/api/tickets/{ticket['id']}/resume", json={"actor_id": "tech-1"})

        response = client.get(f"/api/tickets/{ticket['id']}/pauses")

        assert response.status_code == 200
        data = response.json()
        assert data["count"] == 2
        assert all(p["is_active"] is False for p in data["pauses"])

    @pytest.mark.unit
    def test_history_empty(self, client, ticket):
        response = client.get(f"/api/tickets/{ticket['id']}/pauses")

        assert response.json() == {"ticket_id": ticket["id"], "count": 0, "pauses": []}
