"""
Continuation: post-execution handling of a dispatch unit.

Invoked once per completed unit with the outcome (error or None):

- Success: on_success decides keep (SUCCEEDED) or delete
- Failure: the exception is recorded first, then either
    * retries exhausted -> on_failure decides keep (FAILED) or delete
    * retries left      -> on_error decides QUEUED (retry) or CANCELLED
- Scheduler-jobs: the rest of the carried dispatch set is handed back to
  Scheduler.queue() so the chain continues

Errors raised by the hooks themselves are recorded and force the job to
FAILED so a misbehaving hook can never leave a job unresolved.
"""

import logging
from typing import Optional

from .entities import (
    Job,
    JobException,
    JobStatus,
    SCHEDULER_TYPE,
    now_iso,
)
from .errors import InvalidOperationError, InvalidRunnableError, JobNotFoundError
from .persistence import JobStore
from .runnable import Runnable, RunnableRegistry
from .scheduler import Scheduler, decode_dispatch_set


logger = logging.getLogger(__name__)


def fail_on_hook_error(
    store: JobStore,
    job: Job,
    error: BaseException,
    hook_name: str,
) -> None:
    """Record an error raised by a lifecycle hook and force the job to FAILED."""
    logger.error(
        f"{hook_name} raised for job {job.job_id}, forcing FAILED: {error}",
        exc_info=error,
    )

    store.record_exception(
        job.owner_id,
        JobException.from_error(job, error, prefix=f"{hook_name} raised"),
    )

    job.status = JobStatus.FAILED
    store.persist(job.owner_id, [job])


class Continuation:
    """
    Decides a job's fate once its dispatch unit completes.

    What Continuation MUST NOT do:
    - Run job logic
    - Select jobs (Scheduler's responsibility)
    - Swallow user job errors without an exception record
    """

    def __init__(
        self,
        store: JobStore,
        registry: RunnableRegistry,
        scheduler: Scheduler,
        owner_id: str,
    ):
        self.store = store
        self.registry = registry
        self.scheduler = scheduler
        self.owner_id = owner_id

    def complete(
        self,
        job_id: str,
        unit_id: str,
        error: Optional[BaseException] = None,
    ) -> None:
        """
        Handle completion of the unit that ran job_id.

        Args:
            job_id: Job the unit ran
            unit_id: Dispatch unit id
            error: Exception raised by the unit, None on success
        """
        try:
            job = self.store.get_job(self.owner_id, job_id)
        except JobNotFoundError:
            logger.warning(
                f"Job {job_id} vanished before unit {unit_id} completed, "
                "requesting a fresh scheduling pass"
            )
            self.scheduler.queue()
            return

        # Read before any hook can remove the record
        dispatch_set = (
            decode_dispatch_set(job.state)
            if job.runnable_type == SCHEDULER_TYPE
            else None
        )

        if job.is_terminal():
            logger.info(f"Job {job_id} already {job.status.value}, outcome of unit {unit_id} ignored")
            if error is not None:
                job.dispatch_unit_id = unit_id
                self.store.record_exception(self.owner_id, JobException.from_error(job, error))
        else:
            try:
                runnable = self.registry.create(job.runnable_type)
            except InvalidRunnableError as e:
                fail_on_hook_error(self.store, job, e, "Runnable lookup")
            else:
                if error is None:
                    self._handle_success(job, runnable)
                else:
                    self._handle_failure(job, runnable, error, unit_id)

        if dispatch_set is not None:
            self._chain(job, dispatch_set)

    # =========================================================================
    # Outcomes
    # =========================================================================

    def _handle_success(self, job: Job, runnable: Runnable) -> None:
        try:
            keep = runnable.on_success(job)
        except Exception as e:
            fail_on_hook_error(self.store, job, e, "on_success")
            return

        if keep:
            job.status = JobStatus.SUCCEEDED
            self.store.persist(self.owner_id, [job])
            logger.info(f"Job {job.job_id} succeeded")
        else:
            self.store.remove(self.owner_id, [job])
            logger.info(f"Job {job.job_id} succeeded and was removed")

    def _handle_failure(
        self,
        job: Job,
        runnable: Runnable,
        error: BaseException,
        unit_id: str,
    ) -> None:
        job.dispatch_unit_id = unit_id
        self.store.record_exception(self.owner_id, JobException.from_error(job, error))

        if not job.has_retries_left():
            try:
                keep = runnable.on_failure(job, error)
            except Exception as e:
                fail_on_hook_error(self.store, job, e, "on_failure")
                return

            if keep:
                job.status = JobStatus.FAILED
                self.store.persist(self.owner_id, [job])
                logger.info(
                    f"Job {job.job_id} failed after {job.retry_number + 1} attempt(s): {error}"
                )
            else:
                self.store.remove(self.owner_id, [job])
                logger.info(f"Job {job.job_id} failed and was removed: {error}")
            return

        try:
            next_status = runnable.on_error(job, error)
            if next_status not in (JobStatus.QUEUED, JobStatus.CANCELLED):
                raise InvalidOperationError(
                    f"on_error must return QUEUED or CANCELLED, got {next_status!r}"
                )
        except Exception as e:
            fail_on_hook_error(self.store, job, e, "on_error")
            return

        if next_status == JobStatus.QUEUED:
            job.retry_number += 1
            job.scheduled_run_time = now_iso(job.retry_interval)
            job.status = JobStatus.QUEUED
            self.store.persist(self.owner_id, [job])
            logger.info(
                f"Job {job.job_id} failed, retry {job.retry_number}/{job.maximum_retries} "
                f"scheduled for {job.scheduled_run_time}: {error}"
            )
        else:
            # The change hook runs on_cancellation
            job.status = JobStatus.CANCELLED
            self.store.persist(self.owner_id, [job])
            logger.info(f"Job {job.job_id} failed and was cancelled by on_error: {error}")

    # =========================================================================
    # Chaining
    # =========================================================================

    def _chain(self, job: Job, dispatch_set: list[str]) -> None:
        """Hand the rest of a scheduler-job's dispatch set back to the Scheduler."""
        try:
            self.scheduler.queue(dispatch_set)
        except Exception as e:
            logger.exception(f"Scheduler chaining failed after job {job.job_id}")
            self.store.record_exception(
                self.owner_id,
                JobException.from_error(job, e, prefix="Scheduler chaining failed"),
            )
