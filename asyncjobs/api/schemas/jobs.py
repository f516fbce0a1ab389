"""
Job management API schemas.

Pydantic models for job creation, listing, actions and scheduler status.
"""

from typing import Optional

from pydantic import BaseModel, Field


# ===== Requests =====


class JobCreateRequest(BaseModel):
    """Request to create and queue a job."""

    runnable_type: str = Field(
        ...,
        min_length=1,
        description="Registered runnable type name",
    )
    reference: Optional[str] = Field(
        default=None,
        description="Caller-supplied label for searching",
    )
    maximum_retries: int = Field(
        default=0,
        ge=0,
        description="Retries allowed after the first attempt",
    )
    retry_interval: int = Field(
        default=0,
        ge=0,
        description="Delay before each retry (milliseconds)",
    )
    state: dict[str, str] = Field(
        default_factory=dict,
        description="Initial job state (string to string)",
    )


class JobIdsRequest(BaseModel):
    """Request naming the jobs an action applies to."""

    job_ids: list[str] = Field(
        ...,
        min_length=1,
        description="Job IDs to act on",
    )


# ===== Responses =====


class JobResponse(BaseModel):
    """Job details."""

    job_id: str
    runnable_type: str
    status: str = Field(..., description="PENDING, QUEUED, RUNNING, SUCCEEDED, FAILED, CANCELLED")
    reference: Optional[str] = None
    maximum_retries: int = 0
    retry_number: int = 0
    retry_interval: int = Field(default=0, description="Milliseconds")
    scheduled_run_time: Optional[str] = None
    last_run_time: Optional[str] = None
    dispatch_unit_id: Optional[str] = None
    run_time: Optional[int] = Field(default=None, description="Duration of the last run (milliseconds)")
    created_at: str
    state: Optional[dict[str, str]] = Field(
        default=None,
        description="Job state (single-job lookups only)",
    )


class JobListResponse(BaseModel):
    """Response for listing jobs."""

    jobs: list[JobResponse] = Field(default_factory=list)
    total: int = Field(default=0, description="Number of jobs matching the filters")
    offset: int = 0


class JobActionResponse(BaseModel):
    """Response from delete/run/cancel actions."""

    success: bool
    count: int = Field(..., description="Number of jobs affected")
    job_ids: list[str] = Field(default_factory=list)
    message: str


class JobTotalsResponse(BaseModel):
    """Per-status job counts (scheduler jobs excluded)."""

    QUEUED: int = 0
    RUNNING: int = 0
    SUCCEEDED: int = 0
    FAILED: int = 0
    CANCELLED: int = 0


class JobExceptionResponse(BaseModel):
    """One recorded failure of a job."""

    exception_id: str
    job_id: str
    retry_number: int
    status: str
    exception_type: str
    message: str
    stack_trace: str
    dispatch_unit_id: Optional[str] = None
    created_at: str


class JobExceptionListResponse(BaseModel):
    """Exception history of a job, oldest first."""

    job_id: str
    exceptions: list[JobExceptionResponse] = Field(default_factory=list)
    total: int = 0


# ===== Scheduler =====


class SchedulerConfigResponse(BaseModel):
    """Scheduler tunables in effect."""

    idle_delay_ms: int
    max_batch: int
    chunk_size: int


class SchedulerStatusResponse(BaseModel):
    """Response from scheduler status endpoint."""

    running: bool = Field(..., description="Whether the service has been started")
    owner_id: str
    schedulable: int = Field(..., description="QUEUED non-scheduler jobs")
    active_schedulers: int = Field(..., description="Non-terminal scheduler jobs")
    runnable_types: list[str] = Field(default_factory=list)
    config: SchedulerConfigResponse


class SchedulerKickResponse(BaseModel):
    """Response from a scheduling pass request."""

    started: bool = Field(..., description="Whether a new scheduler job was started")
    scheduler_job_id: Optional[str] = None
    message: str
