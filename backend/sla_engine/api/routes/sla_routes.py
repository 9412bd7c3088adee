"""
SLA API Routes.

Provides endpoints for:
- Live SLA snapshot of a ticket (recomputed on read, never persisted)
- Due time preview under calendar or working-hours accounting
- Manual SLA sweep and resuming the scheduled sweep job
- Resolved branch calendar
"""
import asyncio
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, HTTPException, Path, Query

from sla_engine.core.database import get_supabase_client
from sla_engine.core.exceptions import TicketNotFoundError
from sla_engine.models.schemas import DueAtRequest, TicketSLAView
from sla_engine.services.deadline import compute_due_at
from sla_engine.services.scheduler import SLA_SWEEP_JOB_ID, get_scheduler
from sla_engine.services.sla_status import get_sla_info
from sla_engine.services.sweep import run_sla_sweep
from sla_engine.services.working_calendar import resolve_calendar


router = APIRouter(prefix="/api/sla", tags=["SLA"])

MAX_CALENDAR_RANGE_DAYS = 366


# ==========================================
# TICKET SNAPSHOT
# ==========================================

@router.get(
    "/tickets/{ticket_id}",
    summary="Get Ticket SLA",
    description="Recompute a ticket's SLA status, progress and time remaining"
)
async def get_ticket_sla(
    ticket_id: str = Path(..., description="Ticket ID")
):
    """
    Live SLA view of one ticket.

    The status returned here may be ahead of the stored `sla_status`
    until the next sweep persists it.
    """
    row = get_supabase_client().get_ticket(ticket_id)
    if not row:
        raise TicketNotFoundError(ticket_id)

    ticket = TicketSLAView.model_validate(row)
    info = get_sla_info(ticket)

    return {
        **info.to_dict(),
        "stored_status": ticket.sla_status,
        "pause_count": ticket.pause_count,
        "paused_minutes": ticket.sla_paused_duration,
    }


# ==========================================
# DUE TIME PREVIEW
# ==========================================

@router.post(
    "/due-at",
    summary="Compute Due Time",
    description="Compute a due time with working/calendar minute audit figures"
)
async def preview_due_at(request: DueAtRequest):
    """
    Compute a due time without touching any ticket.

    `bound_exceeded` is true when the branch calendar never opened
    enough to place the budget within the walk limit.
    """
    result = compute_due_at(
        start=request.start,
        sla_hours=request.sla_hours,
        mode=request.mode,
        branch_id=request.branch_id,
        paused_minutes=request.paused_minutes,
    )
    return result.to_dict()


# ==========================================
# SWEEP
# ==========================================

@router.post(
    "/sweep",
    summary="Run SLA Sweep",
    description="Re-classify all open tickets now and escalate threshold crossings"
)
async def trigger_sweep():
    """Run one sweep immediately (same work as the scheduled job)."""
    summary = await asyncio.to_thread(run_sla_sweep)
    return summary.to_dict()


@router.post(
    "/sweep/resume",
    summary="Resume SLA Sweep Job",
    description="Put the scheduled sweep back on schedule after repeated failures paused it"
)
async def resume_sweep_job():
    """
    Resume the scheduled sweep.

    Returns 409 when the scheduler is not running in this process.
    """
    scheduler = get_scheduler()
    if not scheduler.resume_job(SLA_SWEEP_JOB_ID):
        raise HTTPException(
            status_code=409,
            detail="Scheduler is not running in this process"
        )

    return {
        "success": True,
        "job_id": SLA_SWEEP_JOB_ID,
        "jobs": scheduler.get_jobs_status(),
    }


# ==========================================
# BRANCH CALENDAR
# ==========================================

@router.get(
    "/branches/{branch_id}/calendar",
    summary="Get Branch Calendar",
    description="Weekly schedule (defaults filled in) and holidays in a date range"
)
async def get_branch_calendar(
    branch_id: str = Path(..., description="Branch ID"),
    start: Optional[date] = Query(None, description="First date (default: today)"),
    end: Optional[date] = Query(None, description="Last date (default: start + 30 days)")
):
    """Resolved working calendar of a branch."""
    start = start or date.today()
    end = end or start + timedelta(days=30)

    if end < start:
        raise HTTPException(status_code=400, detail="end must not be before start")
    if (end - start).days > MAX_CALENDAR_RANGE_DAYS:
        raise HTTPException(
            status_code=400,
            detail=f"Date range cannot exceed {MAX_CALENDAR_RANGE_DAYS} days"
        )

    calendar = resolve_calendar(branch_id, start, end)

    working_days = 0
    current = start
    while current <= end:
        if calendar.window_on(current) is not None:
            working_days += 1
        current += timedelta(days=1)

    return {
        "branch_id": branch_id,
        "timezone": str(calendar.tz),
        "start": start.isoformat(),
        "end": end.isoformat(),
        "schedule": [
            {
                "day_of_week": entry.day_of_week,
                "open_time": entry.open_time.strftime("%H:%M"),
                "close_time": entry.close_time.strftime("%H:%M"),
                "is_closed": entry.is_closed,
            }
            for entry in calendar.schedule
        ],
        "holidays": sorted(d.isoformat() for d in calendar.holidays),
        "working_days": working_days,
    }
