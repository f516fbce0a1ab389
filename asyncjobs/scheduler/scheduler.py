"""
Self-chaining Scheduler.

The host lets each execution context start only one dispatch unit, so the
scheduler cannot start a whole batch at once. Instead a pass works through
a *dispatch set* (job ids still to be started), one id per scheduler-job:

    queue(ids)            -> persist scheduler-job carrying ids, start it
    scheduler-job run     -> pop one id, claim + start that job, persist rest
    continuation          -> queue(rest)   (or a fresh selection if empty)

Only one scheduler-job may be RUNNING at a time. The guard is a
point-in-time count, not a lock; individual jobs are protected by the
store's atomic claim, so a rare second chain cannot start a job twice.
"""

import json
import logging
import threading
from typing import Iterable, Optional

from .config import SchedulerConfig
from .dispatch import DispatchHost
from .entities import Job, JobStatus, SCHEDULER_TYPE
from .errors import (
    ConcurrencyViolationError,
    InvalidRunnableError,
    JobNotFoundError,
    QuotaError,
)
from .persistence import JobStore
from .runnable import Runnable, RunnableRegistry


logger = logging.getLogger(__name__)


# State key carrying the dispatch set (JSON list of job ids)
DISPATCH_SET_KEY = "dispatch_set"


def encode_dispatch_set(job_ids: Iterable[str]) -> str:
    return json.dumps(list(job_ids))


def decode_dispatch_set(state: dict) -> list[str]:
    raw = state.get(DISPATCH_SET_KEY)
    if not raw:
        return []
    return list(json.loads(raw))


class Scheduler:
    """
    Selects runnable jobs and dispatches them through scheduler-jobs.

    Key behaviors:
    1. queue(ids): start a scheduler-job carrying ids (fresh selection if empty)
    2. select_runnable_ids(): oldest-first, capped per runnable type
    3. dispatch_job(): claim QUEUED -> RUNNING and start its unit
    4. park(): idle pause when a scheduler-job has nothing to dispatch
    """

    def __init__(
        self,
        store: JobStore,
        registry: RunnableRegistry,
        host: DispatchHost,
        owner_id: str,
        config: Optional[SchedulerConfig] = None,
    ):
        """
        Initialize Scheduler.

        Args:
            store: JobStore for all reads and writes
            registry: Registry used to resolve runnable types
            host: Dispatch host that runs units
            owner_id: Owner scope of every job this scheduler handles
            config: Tunables (idle delay, batch size)
        """
        self.store = store
        self.registry = registry
        self.host = host
        self.owner_id = owner_id
        self.config = config or SchedulerConfig()

        self._idle = threading.Event()

    # =========================================================================
    # Chaining
    # =========================================================================

    def queue(self, remaining_ids: Iterable[str] = ()) -> Optional[Job]:
        """
        Continue (or start) a scheduling pass.

        Args:
            remaining_ids: Dispatch set still to be started; empty requests
                a fresh selection

        Returns:
            The started scheduler-job, or None if nothing was started
        """
        remaining = list(remaining_ids)

        if self.store.count_active(self.owner_id, SCHEDULER_TYPE) >= 1:
            logger.debug("Scheduler already running, not starting another")
            return None

        if not remaining:
            remaining = self.select_runnable_ids(self.config.max_batch)

            if not remaining and self.store.count_schedulable(self.owner_id) == 0:
                logger.debug("No schedulable jobs")
                return None

        job = Job.create(
            runnable_type=SCHEDULER_TYPE,
            owner_id=self.owner_id,
            reference=f"dispatch {len(remaining)}",
            state={DISPATCH_SET_KEY: encode_dispatch_set(remaining)},
        )
        self.store.persist(self.owner_id, [job], save_state=True)

        try:
            job = self.store.claim(self.owner_id, job.job_id)
        except ConcurrencyViolationError as e:
            logger.warning(f"Scheduler job {job.job_id} could not be claimed: {e}")
            return None

        try:
            unit_id = self.start(job.job_id)
        except Exception:
            logger.exception(f"Scheduler job {job.job_id} could not be started, removing it")
            self.store.remove(self.owner_id, [job])
            raise

        logger.info(
            f"Started scheduler job {job.job_id} as unit {unit_id} "
            f"({len(remaining)} jobs to dispatch)"
        )
        return job

    def start(self, job_id: str) -> str:
        """Start a unit for job_id, falling back to the deferred path on quota."""
        try:
            return self.host.start_unit(job_id)
        except QuotaError:
            logger.warning(f"Dispatch quota used, deferring job {job_id}")
            return self.host.defer_unit(job_id)

    # =========================================================================
    # Selection
    # =========================================================================

    def select_runnable_ids(self, max_batch: int) -> list[str]:
        """
        Pick due QUEUED jobs without exceeding any type's concurrency cap.

        Walks jobs oldest scheduled_run_time first. For each runnable type
        the cap is looked up once and the RUNNING count is seeded from the
        store, then incremented for every job selected in this pass.

        Args:
            max_batch: Maximum number of jobs considered

        Returns:
            Selected job ids, in dispatch order
        """
        maximum_active: dict[str, int] = {}
        active: dict[str, int] = {}
        selected: list[str] = []

        for job in self.store.get_scheduled_jobs(self.owner_id, max_batch):
            runnable_type = job.runnable_type

            if runnable_type not in maximum_active:
                try:
                    maximum_active[runnable_type] = self.registry.create(runnable_type).maximum_active()
                except InvalidRunnableError as e:
                    logger.warning(f"Skipping jobs of unresolvable type: {e}")
                    maximum_active[runnable_type] = 0
                active[runnable_type] = self.store.count_active(self.owner_id, runnable_type)

            if active[runnable_type] < maximum_active[runnable_type]:
                selected.append(job.job_id)
                active[runnable_type] += 1

        logger.debug(f"Selected {len(selected)} runnable jobs")
        return selected

    # =========================================================================
    # Dispatch Step
    # =========================================================================

    def dispatch_job(self, job_id: str) -> Optional[str]:
        """
        Claim a job (QUEUED -> RUNNING) and start its unit.

        Jobs that vanished or are no longer QUEUED are skipped.

        Returns:
            The unit id, or None if the job was skipped
        """
        try:
            job = self.store.claim(self.owner_id, job_id)
        except JobNotFoundError:
            logger.warning(f"Job {job_id} no longer exists, skipping dispatch")
            return None
        except ConcurrencyViolationError as e:
            logger.warning(f"Job {job_id} not dispatchable, skipping: {e}")
            return None

        try:
            unit_id = self.start(job_id)
        except Exception:
            job.status = JobStatus.QUEUED
            self.store.persist(self.owner_id, [job])
            raise

        logger.info(
            f"Dispatched job {job_id} (type={job.runnable_type}, "
            f"retry={job.retry_number}) as unit {unit_id}"
        )
        return unit_id

    def park(self) -> None:
        """Pause for the configured idle delay (cut short by wake())."""
        self._idle.wait(self.config.idle_delay_ms / 1000.0)
        self._idle.clear()

    def wake(self) -> None:
        self._idle.set()


class SchedulerRunnable(Runnable):
    """
    Runnable of scheduler-jobs: starts one job from the carried dispatch set.

    Scheduler-jobs never share a slot (maximum_active 1) and are removed
    once they finish; the continuation chains the rest of the set.
    """

    def __init__(self, scheduler: Scheduler):
        self.scheduler = scheduler

    def maximum_active(self) -> int:
        return 1

    def run(self, job: Job, dispatch_unit_id: str) -> None:
        remaining = decode_dispatch_set(job.state)

        if not remaining:
            self.scheduler.park()
            return

        next_id = remaining.pop(0)
        self.scheduler.dispatch_job(next_id)
        job.state[DISPATCH_SET_KEY] = encode_dispatch_set(remaining)

    def on_success(self, job: Job) -> bool:
        return False

    def on_failure(self, job: Job, error: BaseException) -> bool:
        return False

    def on_cancellation(self, job: Job) -> bool:
        return False
