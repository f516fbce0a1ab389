"""
Queue Manager: create/queue and admin surface over the Job Store.

- Creating and queueing jobs (the change hook promotes and schedules them)
- Filtered/sorted/paginated listing
- Delete, re-run and cancel by id
- Per-status totals and exception history

What QueueManager MUST NOT do:
- Execute or dispatch jobs (Scheduler's responsibility)
- Decide retries (Continuation's responsibility)
"""

import logging
from typing import Iterable, Optional, Sequence

from .entities import Job, JobException, JobStatus
from .errors import InvalidOperationError
from .persistence import JobStore


logger = logging.getLogger(__name__)


# Statuses shown by default in listings
DEFAULT_LIST_STATUSES = (JobStatus.RUNNING, JobStatus.QUEUED)

# Statuses from which a job may be re-run
RERUNNABLE_STATUSES = (
    JobStatus.SUCCEEDED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
    JobStatus.QUEUED,
)

# Statuses reported by get_totals()
TOTAL_STATUSES = (
    JobStatus.QUEUED,
    JobStatus.RUNNING,
    JobStatus.SUCCEEDED,
    JobStatus.FAILED,
    JobStatus.CANCELLED,
)

DEFAULT_MAX_JOBS = 200


class QueueManager:
    """Owner-scoped job management operations."""

    def __init__(self, store: JobStore, owner_id: str):
        """
        Initialize QueueManager.

        Args:
            store: JobStore for storage operations
            owner_id: Owner scope of every operation
        """
        self.store = store
        self.owner_id = owner_id

    # =========================================================================
    # Create / Queue
    # =========================================================================

    def create_job(
        self,
        runnable_type: str,
        reference: Optional[str] = None,
        maximum_retries: int = 0,
        retry_interval: int = 0,
        state: Optional[dict] = None,
    ) -> Job:
        """
        Build an unsaved PENDING job. Call queue_jobs() to persist it.

        Args:
            runnable_type: Registered runnable type name
            reference: Caller-supplied label
            maximum_retries: Retries allowed after the first attempt
            retry_interval: Delay before each retry, in milliseconds
            state: Initial string-to-string state map

        Raises:
            InvalidOperationError: On negative retry settings or non-string state
        """
        if maximum_retries < 0:
            raise InvalidOperationError(f"maximum_retries must be >= 0, got {maximum_retries}")
        if retry_interval < 0:
            raise InvalidOperationError(f"retry_interval must be >= 0, got {retry_interval}")

        state = state or {}
        for key, value in state.items():
            if not isinstance(key, str) or not isinstance(value, str):
                raise InvalidOperationError(
                    f"Job state must map strings to strings, got {key!r}: {value!r}"
                )

        return Job.create(
            runnable_type=runnable_type,
            owner_id=self.owner_id,
            reference=reference,
            maximum_retries=maximum_retries,
            retry_interval=retry_interval,
            state=state,
        )

    def queue_jobs(self, jobs: Sequence[Job]) -> list[Job]:
        """
        Persist jobs (with state); returns them with ids assigned.

        Raises:
            InvalidRunnableError: If any job names an unregistered runnable type
        """
        jobs = self.store.persist(self.owner_id, jobs, save_state=True)
        logger.info(f"Queued {len(jobs)} job(s)")
        return jobs

    # =========================================================================
    # Queries
    # =========================================================================

    def get_job(self, job_id: str) -> Job:
        return self.store.get_job(self.owner_id, job_id)

    def get_jobs(
        self,
        statuses: Optional[Sequence[JobStatus]] = DEFAULT_LIST_STATUSES,
        runnable_search: str = "",
        reference_search: str = "",
        order_by: str = "scheduled_run_time",
        descending: bool = False,
        offset: int = 0,
        max_jobs: int = DEFAULT_MAX_JOBS,
    ) -> list[Job]:
        """List jobs matching the filters (substring search on type/reference)."""
        return self.store.list_jobs(
            self.owner_id,
            statuses=statuses,
            runnable_like=runnable_search,
            reference_like=reference_search,
            order_by=order_by,
            descending=descending,
            offset=offset,
            limit=max_jobs,
        )

    def count_jobs(
        self,
        statuses: Optional[Sequence[JobStatus]] = DEFAULT_LIST_STATUSES,
        runnable_search: str = "",
        reference_search: str = "",
    ) -> int:
        """Number of jobs matching the filters, ignoring pagination."""
        return self.store.count_jobs(
            self.owner_id,
            statuses=statuses,
            runnable_like=runnable_search,
            reference_like=reference_search,
        )

    def get_totals(self) -> dict[str, int]:
        """Job counts keyed by status name."""
        counts = self.store.count_by_status(self.owner_id)
        return {status.value: counts[status] for status in TOTAL_STATUSES}

    def get_exceptions(self, job_id: str) -> list[JobException]:
        """
        Exception history of a job.

        Raises:
            JobNotFoundError: If the job doesn't exist
        """
        self.store.get_job(self.owner_id, job_id)
        return self.store.list_exceptions(self.owner_id, job_id)

    # =========================================================================
    # Actions
    # =========================================================================

    def delete_jobs(self, job_ids: Iterable[str]) -> int:
        """Delete jobs by id; returns how many existed."""
        jobs = self.store.get_jobs(self.owner_id, job_ids)
        self.store.remove(self.owner_id, jobs)
        logger.info(f"Deleted {len(jobs)} job(s)")
        return len(jobs)

    def run_jobs(self, job_ids: Iterable[str]) -> list[Job]:
        """
        Re-run jobs by resetting them to PENDING.

        The change hook promotes them to QUEUED (retry 0, due now) and
        requests a scheduling pass.

        Raises:
            InvalidOperationError: If any job is RUNNING
        """
        jobs = self.store.get_jobs(self.owner_id, job_ids)

        for job in jobs:
            if job.status not in RERUNNABLE_STATUSES:
                raise InvalidOperationError(
                    f"Cannot re-run job {job.job_id} in {job.status.value} status"
                )

        for job in jobs:
            job.status = JobStatus.PENDING

        jobs = self.store.persist(self.owner_id, jobs)
        logger.info(f"Re-running {len(jobs)} job(s)")
        return jobs

    def cancel_jobs(self, job_ids: Iterable[str]) -> list[Job]:
        """
        Request cancellation of non-terminal jobs.

        Terminal jobs are left alone. A RUNNING job's run() is not
        interrupted; it keeps its slot until it returns.

        Returns:
            The jobs that were cancelled
        """
        jobs = [
            job
            for job in self.store.get_jobs(self.owner_id, job_ids)
            if not job.is_terminal()
        ]

        for job in jobs:
            job.status = JobStatus.CANCELLED

        self.store.persist(self.owner_id, jobs)
        logger.info(f"Cancelled {len(jobs)} job(s)")
        return jobs
