"""
Scheduler router.

- GET /scheduler/status - Service status, schedulable backlog, config
- POST /scheduler/kick - Request a scheduling pass
"""

from fastapi import APIRouter

from .._scheduler_state import get_scheduler_service
from ..schemas.jobs import SchedulerKickResponse, SchedulerStatusResponse
from ._errors import to_http_error


router = APIRouter()


@router.get("/status", response_model=SchedulerStatusResponse)
async def get_scheduler_status():
    """Get scheduler status."""
    service = get_scheduler_service()

    try:
        return SchedulerStatusResponse(**service.get_status())
    except Exception as e:
        raise to_http_error(e, "get scheduler status")


@router.post("/kick", response_model=SchedulerKickResponse)
async def kick_scheduler():
    """
    Request a scheduling pass.

    No-op when a scheduler job is already active or nothing is schedulable.
    """
    service = get_scheduler_service()

    try:
        scheduler_job = service.request_pass()
    except Exception as e:
        raise to_http_error(e, "start scheduling pass")

    if scheduler_job is None:
        return SchedulerKickResponse(
            started=False,
            message="No scheduling pass started (already active or nothing schedulable)",
        )

    return SchedulerKickResponse(
        started=True,
        scheduler_job_id=scheduler_job.job_id,
        message="Scheduling pass started",
    )
