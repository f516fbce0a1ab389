"""
Executor: the body of a dispatch unit.

The host calls run_unit() to execute a job's Runnable and complete_unit()
afterwards, in a separate execution context, to hand the outcome to the
Continuation.

What Executor MUST NOT do:
- Decide retry/cancel/fail transitions (Continuation's responsibility)
- Catch the Runnable's exception (the host passes it to complete_unit)
"""

import logging
import time
from typing import Optional

from .continuation import Continuation
from .entities import JobStatus, now_iso
from .persistence import JobStore
from .runnable import RunnableRegistry


logger = logging.getLogger(__name__)


class JobExecutor:
    """Runs jobs for a dispatch host (implements UnitRunner)."""

    def __init__(
        self,
        store: JobStore,
        registry: RunnableRegistry,
        continuation: Continuation,
        owner_id: str,
    ):
        self.store = store
        self.registry = registry
        self.continuation = continuation
        self.owner_id = owner_id

    def run_unit(self, job_id: str, unit_id: str) -> None:
        """
        Execute the job's Runnable.

        State changes made by run() are persisted only if it returns
        normally and the job is still RUNNING; status is left to the store.
        Raises whatever run() raises.
        """
        job = self.store.get_job(self.owner_id, job_id)

        if job.status != JobStatus.RUNNING:
            logger.info(f"Job {job_id} is {job.status.value}, unit {unit_id} will not run it")
            return

        runnable = self.registry.create(job.runnable_type)

        job.dispatch_unit_id = unit_id
        job.last_run_time = now_iso()

        logger.debug(f"Running job {job_id} ({job.runnable_type}) in unit {unit_id}")
        started = time.monotonic()

        runnable.run(job, unit_id)

        job.run_time = int((time.monotonic() - started) * 1000)

        if not self.store.save_run(self.owner_id, job):
            logger.info(f"Job {job_id} left RUNNING during unit {unit_id}, run results not saved")

    def complete_unit(
        self,
        job_id: str,
        unit_id: str,
        error: Optional[BaseException],
    ) -> None:
        self.continuation.complete(job_id, unit_id, error)
