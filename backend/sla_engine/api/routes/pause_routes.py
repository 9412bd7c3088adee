"""
Job Pause API Routes.

Provides endpoints for freezing and resuming a ticket's SLA clock and
for reading its pause history. Precondition failures are returned as
409 responses carrying a machine-readable `reason`
(already_paused, ticket_closed, no_active_pause, conflict).
"""
from fastapi import APIRouter, Path

from sla_engine.models.schemas import PauseRequest, ResumeRequest
from sla_engine.services.pause_ledger import (
    get_pause_history,
    pause_ticket,
    resume_ticket,
)


router = APIRouter(prefix="/api/tickets", tags=["Job Pauses"])


def _serialize_pause(record) -> dict:
    data = record.model_dump(mode="json")
    data["reason_label"] = record.reason_category.label if record.reason_category else None
    data["is_active"] = record.is_active
    return data


@router.post(
    "/{ticket_id}/pause",
    summary="Pause Job",
    description="Stop the SLA countdown of an open ticket"
)
async def pause_job(
    request: PauseRequest,
    ticket_id: str = Path(..., description="Ticket ID")
):
    record = pause_ticket(
        ticket_id=ticket_id,
        actor_id=request.actor_id,
        reason_category=request.reason_category,
        reason=request.reason,
        notes=request.notes,
    )
    return {
        "success": True,
        "pause": _serialize_pause(record),
    }


@router.post(
    "/{ticket_id}/resume",
    summary="Resume Job",
    description="Resume a paused ticket and extend its deadline by the paused minutes"
)
async def resume_job(
    request: ResumeRequest,
    ticket_id: str = Path(..., description="Ticket ID")
):
    """
    Resume a paused ticket.

    Retrying a resume that already succeeded returns 409
    `no_active_pause` and leaves the deadline unchanged.
    """
    result = resume_ticket(
        ticket_id=ticket_id,
        actor_id=request.actor_id,
        notes=request.notes,
    )
    return {
        "success": True,
        **result.to_dict(),
    }


@router.get(
    "/{ticket_id}/pauses",
    summary="Get Pause History",
    description="All pause records of a ticket, newest first"
)
async def list_pauses(
    ticket_id: str = Path(..., description="Ticket ID")
):
    history = get_pause_history(ticket_id)
    return {
        "ticket_id": ticket_id,
        "count": len(history),
        "pauses": [_serialize_pause(record) for record in history],
    }
