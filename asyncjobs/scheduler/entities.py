"""
Scheduler Domain Entities.

- Job: durable unit of schedulable work with retry/status state
- JobStateChunk: one bounded-size piece of a job's serialized state
- JobException: append-only log entry for a recorded failure

Timestamps are ISO-8601 UTC strings with a trailing "Z".
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional
import traceback
import uuid


class JobStatus(str, Enum):
    """
    Job status values.

    - PENDING: Created, not yet validated/promoted
    - QUEUED: Waiting for the scheduler
    - RUNNING: Dispatched to a dispatch unit
    - SUCCEEDED / FAILED / CANCELLED: Terminal
    """

    PENDING = "PENDING"
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES = (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)

# Runnable type name of the scheduler's own jobs
SCHEDULER_TYPE = "asyncjobs.Scheduler"

# Fixed-width so stored timestamps compare correctly as text
TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def now_iso(offset_ms: int = 0) -> str:
    """Get current time (plus an optional offset) as ISO format string."""
    now = datetime.utcnow() + timedelta(milliseconds=offset_ms)
    return now.strftime(TIMESTAMP_FORMAT)


@dataclass
class Job:
    """
    Single unit of schedulable work.

    Mutability rules:
    - job_id, owner_id, runnable_type, created_at: Immutable once persisted
    - state: Mutated by the Runnable during run(); durable only if run() returns
    - status, retry_number, scheduled_run_time: Owned by the scheduler core
    - dispatch_unit_id, last_run_time, run_time: Stamped per dispatch unit
    """

    job_id: Optional[str]
    owner_id: str
    runnable_type: str
    status: JobStatus
    state: dict = field(default_factory=dict)
    reference: Optional[str] = None
    maximum_retries: int = 0
    retry_number: int = 0
    retry_interval: int = 0  # milliseconds
    scheduled_run_time: Optional[str] = None
    last_run_time: Optional[str] = None
    dispatch_unit_id: Optional[str] = None
    run_time: Optional[int] = None  # milliseconds
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def create(
        cls,
        runnable_type: str,
        owner_id: str,
        reference: Optional[str] = None,
        maximum_retries: int = 0,
        retry_interval: int = 0,
        state: Optional[dict] = None,
    ) -> "Job":
        """Create a new unsaved Job with PENDING status."""
        return cls(
            job_id=None,
            owner_id=owner_id,
            runnable_type=runnable_type,
            status=JobStatus.PENDING,
            state=dict(state or {}),
            reference=reference,
            maximum_retries=maximum_retries,
            retry_interval=retry_interval,
        )

    def is_terminal(self) -> bool:
        """Check if job is in a terminal state."""
        return self.status in TERMINAL_STATUSES

    def has_retries_left(self) -> bool:
        return self.retry_number < self.maximum_retries


@dataclass
class JobStateChunk:
    """One ordered piece of a job's serialized state (1-based chunk_number)."""

    job_id: Optional[str]
    chunk_number: int
    content: str


@dataclass
class JobException:
    """
    Append-only record of a failure raised while processing a job.

    Never updated or deleted; one row per recorded failure.
    """

    exception_id: str
    job_id: str
    retry_number: int
    status: JobStatus
    exception_type: str
    message: str
    stack_trace: str
    dispatch_unit_id: Optional[str] = None
    created_at: str = field(default_factory=now_iso)

    @classmethod
    def from_error(
        cls,
        job: Job,
        error: BaseException,
        prefix: Optional[str] = None,
    ) -> "JobException":
        """Build a record for `error` as seen at the job's current retry/status."""
        message = str(error)
        if prefix:
            message = f"{prefix}: {message}"

        return cls(
            exception_id=generate_uuid(),
            job_id=job.job_id,
            retry_number=job.retry_number,
            status=job.status,
            exception_type=type(error).__name__,
            message=message,
            stack_trace="".join(
                traceback.format_exception(type(error), error, error.__traceback__)
            ),
            dispatch_unit_id=job.dispatch_unit_id,
        )
