"""
Recovery Manager.

Runs once when a service starts, before the first scheduling pass:
- Scheduler-jobs left unfinished by a previous process are removed.
  A RUNNING one would otherwise hold the single-scheduler guard forever.
- RUNNING jobs whose dispatch unit was lost are completed as failed
  attempts, so the usual retry / on_failure handling decides their fate.

Assumes no other process is serving the same owner while it runs.
Recovery is idempotent: running it twice finds nothing the second time.
"""

import logging

from .continuation import Continuation
from .entities import JobStatus, SCHEDULER_TYPE
from .errors import DispatchUnitLostError
from .persistence import JobStore


logger = logging.getLogger(__name__)


UNFINISHED_STATUSES = (JobStatus.PENDING, JobStatus.QUEUED, JobStatus.RUNNING)

# Unit id recorded for attempts completed by recovery
RECOVERY_UNIT_ID = "recovery"


class RecoveryManager:
    """Cleans up after a process that stopped mid-dispatch."""

    def __init__(self, store: JobStore, continuation: Continuation, owner_id: str):
        self.store = store
        self.continuation = continuation
        self.owner_id = owner_id

    def recover_on_startup(self) -> dict:
        """
        Perform recovery for this owner.

        Returns:
            Recovery statistics
        """
        stats = {
            "scheduler_jobs_removed": 0,
            "running_jobs_recovered": 0,
            "errors": [],
        }

        logger.info(f"Starting recovery for owner {self.owner_id}...")

        try:
            stats["scheduler_jobs_removed"] = self._remove_scheduler_jobs()
        except Exception as e:
            logger.error(f"Error removing stale scheduler jobs: {e}")
            stats["errors"].append(f"Scheduler jobs: {e}")

        try:
            stats["running_jobs_recovered"] = self._recover_running_jobs()
        except Exception as e:
            logger.error(f"Error recovering RUNNING jobs: {e}")
            stats["errors"].append(f"Running jobs: {e}")

        logger.info(
            f"Recovery complete: "
            f"{stats['scheduler_jobs_removed']} scheduler jobs removed, "
            f"{stats['running_jobs_recovered']} running jobs recovered"
        )

        return stats

    def _remove_scheduler_jobs(self) -> int:
        stale = self.store.get_jobs_by_status(
            self.owner_id, UNFINISHED_STATUSES, runnable_type=SCHEDULER_TYPE
        )
        self.store.remove(self.owner_id, stale)
        return len(stale)

    def _recover_running_jobs(self) -> int:
        orphaned = [
            job
            for job in self.store.get_jobs_by_status(self.owner_id, [JobStatus.RUNNING])
            if job.runnable_type != SCHEDULER_TYPE
        ]

        for job in orphaned:
            logger.info(f"Recovering RUNNING job {job.job_id} (last unit {job.dispatch_unit_id})")
            self.continuation.complete(
                job.job_id,
                RECOVERY_UNIT_ID,
                DispatchUnitLostError(
                    f"Dispatch unit of job {job.job_id} was lost before it completed"
                ),
            )

        return len(orphaned)
