"""
Jobs router for job management API.

- POST /jobs - Create and queue a job
- GET /jobs - List jobs (filter, search, sort, paginate)
- GET /jobs/totals - Per-status counts
- GET /jobs/{job_id} - Get job details including state
- GET /jobs/{job_id}/exceptions - Exception history
- POST /jobs/delete - Delete jobs
- POST /jobs/run - Re-run jobs
- POST /jobs/cancel - Cancel jobs
"""

from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from asyncjobs.scheduler import Job, JobException, JobStatus
from asyncjobs.scheduler.queue_manager import DEFAULT_LIST_STATUSES, DEFAULT_MAX_JOBS

from .._scheduler_state import get_scheduler_service
from ..schemas.jobs import (
    JobActionResponse,
    JobCreateRequest,
    JobExceptionListResponse,
    JobExceptionResponse,
    JobIdsRequest,
    JobListResponse,
    JobResponse,
    JobTotalsResponse,
)
from ._errors import to_http_error


router = APIRouter()


def _job_to_response(job: Job, include_state: bool = False) -> JobResponse:
    return JobResponse(
        job_id=job.job_id,
        runnable_type=job.runnable_type,
        status=job.status.value,
        reference=job.reference,
        maximum_retries=job.maximum_retries,
        retry_number=job.retry_number,
        retry_interval=job.retry_interval,
        scheduled_run_time=job.scheduled_run_time,
        last_run_time=job.last_run_time,
        dispatch_unit_id=job.dispatch_unit_id,
        run_time=job.run_time,
        created_at=job.created_at,
        state=dict(job.state) if include_state else None,
    )


def _exception_to_response(record: JobException) -> JobExceptionResponse:
    return JobExceptionResponse(
        exception_id=record.exception_id,
        job_id=record.job_id,
        retry_number=record.retry_number,
        status=record.status.value,
        exception_type=record.exception_type,
        message=record.message,
        stack_trace=record.stack_trace,
        dispatch_unit_id=record.dispatch_unit_id,
        created_at=record.created_at,
    )


def _parse_statuses(values: Optional[list[str]]) -> tuple[JobStatus, ...]:
    if not values:
        return DEFAULT_LIST_STATUSES

    statuses = []
    for value in values:
        for name in value.split(","):
            name = name.strip().upper()
            if not name:
                continue
            try:
                statuses.append(JobStatus(name))
            except ValueError:
                raise HTTPException(status_code=400, detail=f"Unknown job status: {name}")
    return tuple(statuses)


# ===== Create =====


@router.post("", response_model=JobResponse, status_code=201)
async def create_job(request: JobCreateRequest):
    """
    Create a job and queue it.

    The job is promoted to QUEUED immediately and a scheduling pass is
    requested. Unknown runnable types are rejected with 400.
    """
    service = get_scheduler_service()
    manager = service.queue_manager

    try:
        job = manager.create_job(
            runnable_type=request.runnable_type,
            reference=request.reference,
            maximum_retries=request.maximum_retries,
            retry_interval=request.retry_interval,
            state=request.state,
        )
        [job] = manager.queue_jobs([job])
    except Exception as e:
        raise to_http_error(e, "create job")

    return _job_to_response(job, include_state=True)


# ===== Queries =====


@router.get("", response_model=JobListResponse)
async def list_jobs(
    status: Optional[list[str]] = Query(
        default=None,
        description="Statuses to include (repeat or comma separate; default RUNNING,QUEUED)",
    ),
    runnable: str = Query(default="", description="Substring of the runnable type"),
    reference: str = Query(default="", description="Substring of the reference"),
    order_by: str = Query(default="scheduled_run_time", description="Sort column"),
    descending: bool = Query(default=False),
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=DEFAULT_MAX_JOBS, ge=1, le=1000, description="Maximum jobs to return"),
):
    """List jobs matching the filters, RUNNING and QUEUED by default."""
    service = get_scheduler_service()
    statuses = _parse_statuses(status)

    try:
        jobs = service.queue_manager.get_jobs(
            statuses=statuses,
            runnable_search=runnable,
            reference_search=reference,
            order_by=order_by,
            descending=descending,
            offset=offset,
            max_jobs=limit,
        )
        total = service.queue_manager.count_jobs(
            statuses=statuses,
            runnable_search=runnable,
            reference_search=reference,
        )
    except Exception as e:
        raise to_http_error(e, "list jobs")

    return JobListResponse(
        jobs=[_job_to_response(job) for job in jobs],
        total=total,
        offset=offset,
    )


@router.get("/totals", response_model=JobTotalsResponse)
async def get_totals():
    """Job counts per status."""
    service = get_scheduler_service()

    try:
        return JobTotalsResponse(**service.queue_manager.get_totals())
    except Exception as e:
        raise to_http_error(e, "count jobs")


@router.get("/{job_id}", response_model=JobResponse)
async def get_job(job_id: str):
    """Get a job by ID, including its state."""
    service = get_scheduler_service()

    try:
        job = service.queue_manager.get_job(job_id)
    except Exception as e:
        raise to_http_error(e, "get job")

    return _job_to_response(job, include_state=True)


@router.get("/{job_id}/exceptions", response_model=JobExceptionListResponse)
async def get_job_exceptions(job_id: str):
    """Exception history of a job, oldest first. Kept after the job is retried."""
    service = get_scheduler_service()

    try:
        records = service.queue_manager.get_exceptions(job_id)
    except Exception as e:
        raise to_http_error(e, "get job exceptions")

    return JobExceptionListResponse(
        job_id=job_id,
        exceptions=[_exception_to_response(r) for r in records],
        total=len(records),
    )


# ===== Actions =====


@router.post("/delete", response_model=JobActionResponse)
async def delete_jobs(request: JobIdsRequest):
    """Delete jobs. Unknown IDs are ignored."""
    service = get_scheduler_service()

    try:
        count = service.queue_manager.delete_jobs(request.job_ids)
    except Exception as e:
        raise to_http_error(e, "delete jobs")

    return JobActionResponse(
        success=True,
        count=count,
        job_ids=request.job_ids,
        message=f"Deleted {count} job(s)",
    )


@router.post("/run", response_model=JobActionResponse)
async def run_jobs(request: JobIdsRequest):
    """
    Re-run jobs from retry 0, due now.

    RUNNING jobs cannot be re-run (400).
    """
    service = get_scheduler_service()

    try:
        jobs = service.queue_manager.run_jobs(request.job_ids)
    except Exception as e:
        raise to_http_error(e, "run jobs")

    return JobActionResponse(
        success=True,
        count=len(jobs),
        job_ids=[job.job_id for job in jobs],
        message=f"Queued {len(jobs)} job(s) to run",
    )


@router.post("/cancel", response_model=JobActionResponse)
async def cancel_jobs(request: JobIdsRequest):
    """
    Cancel jobs that have not finished.

    A RUNNING job is marked CANCELLED but its current run is not interrupted.
    """
    service = get_scheduler_service()

    try:
        jobs = service.queue_manager.cancel_jobs(request.job_ids)
    except Exception as e:
        raise to_http_error(e, "cancel jobs")

    return JobActionResponse(
        success=True,
        count=len(jobs),
        job_ids=[job.job_id for job in jobs],
        message=f"Cancelled {len(jobs)} job(s)",
    )
