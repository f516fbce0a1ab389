"""
Job change hook.

Registered as a JobStore change listener:

before persist
    Jobs written as PENDING are validated (runnable type must be registered)
    and promoted to QUEUED with retry_number 0, due now.

after persist
    Jobs that changed *to* CANCELLED get on_cancellation (False deletes).
    If any other non-scheduler job was written, a parked scheduler-job is
    woken and one scheduling pass is requested for the whole batch. A pass
    that fails to start is logged; the committed write stands.
"""

import logging

from .continuation import fail_on_hook_error
from .entities import Job, JobStatus, SCHEDULER_TYPE, now_iso
from .persistence import JobChange, JobStore
from .runnable import RunnableRegistry
from .scheduler import Scheduler


logger = logging.getLogger(__name__)


class JobLifecycleHook:
    """Promotes PENDING jobs, runs cancellation hooks, triggers scheduling."""

    def __init__(
        self,
        store: JobStore,
        registry: RunnableRegistry,
        scheduler: Scheduler,
    ):
        self.store = store
        self.registry = registry
        self.scheduler = scheduler

    def before_persist(self, changes: list[JobChange]) -> None:
        """
        Raises:
            InvalidRunnableError: If a PENDING job names an unknown runnable
                type; nothing in the batch is written
        """
        for _, job in changes:
            if job.status != JobStatus.PENDING:
                continue

            self.registry.validate(job.runnable_type)

            job.status = JobStatus.QUEUED
            job.retry_number = 0
            job.scheduled_run_time = now_iso()

    def after_persist(self, changes: list[JobChange]) -> None:
        request_pass = False

        for previous, job in changes:
            if job.status == JobStatus.CANCELLED:
                if previous is None or previous.status != JobStatus.CANCELLED:
                    self._cancelled(job)
            elif job.runnable_type != SCHEDULER_TYPE:
                request_pass = True

        if request_pass:
            self.scheduler.wake()
            try:
                self.scheduler.queue()
            except Exception:
                # The batch is committed; the next pass picks it up
                logger.exception("Scheduling pass could not be started after persist")

    def _cancelled(self, job: Job) -> None:
        try:
            keep = self.registry.create(job.runnable_type).on_cancellation(job)
        except Exception as e:
            fail_on_hook_error(self.store, job, e, "on_cancellation")
            return

        if keep:
            logger.info(f"Job {job.job_id} cancelled")
        else:
            self.store.remove(job.owner_id, [job])
            logger.info(f"Job {job.job_id} cancelled and removed")
