"""
Scheduler Test Fixtures.

Base fixtures:
  - Empty temporary database
  - Registry of scripted runnables
  - Inline dispatch host (units run only when the test asks)

Scripted runnables record every run and hook call in RUN_LOG / HOOK_LOG,
since a fresh instance is created for every invocation.
"""

import tempfile
from pathlib import Path
from typing import Callable, Generator

import pytest

from asyncjobs.scheduler import (
    InlineDispatchHost,
    Job,
    JobStatus,
    JobStore,
    Runnable,
    RunnableRegistry,
    Scheduler,
    SchedulerConfig,
    SchedulerService,
    StateCodec,
)
from asyncjobs.scheduler.entities import now_iso


OWNER_ID = "owner-a"
OTHER_OWNER_ID = "owner-b"

# (runnable type, job_id) for every run() call
RUN_LOG: list[tuple[str, str]] = []

# (hook name, job_id) for every lifecycle hook call
HOOK_LOG: list[tuple[str, str]] = []


# =============================================================================
# Scripted Runnables
# =============================================================================


class RecordingRunnable(Runnable):
    """Succeeds, counting its runs in job.state["runs"]."""

    type_name = "test.Succeed"

    def run(self, job: Job, dispatch_unit_id: str) -> None:
        RUN_LOG.append((self.type_name, job.job_id))
        job.state["runs"] = str(int(job.state.get("runs", "0")) + 1)

    def on_success(self, job: Job) -> bool:
        HOOK_LOG.append(("on_success", job.job_id))
        return True

    def on_failure(self, job: Job, error: BaseException) -> bool:
        HOOK_LOG.append(("on_failure", job.job_id))
        return True

    def on_cancellation(self, job: Job) -> bool:
        HOOK_LOG.append(("on_cancellation", job.job_id))
        return True

    def on_error(self, job: Job, error: BaseException) -> JobStatus:
        HOOK_LOG.append(("on_error", job.job_id))
        return JobStatus.QUEUED


class PairRunnable(RecordingRunnable):
    type_name = "test.Pair"

    def maximum_active(self) -> int:
        return 2


class FailingRunnable(RecordingRunnable):
    """Always raises; state changes must never be saved."""

    type_name = "test.Fail"

    def run(self, job: Job, dispatch_unit_id: str) -> None:
        RUN_LOG.append((self.type_name, job.job_id))
        job.state["touched"] = "yes"
        raise RuntimeError(f"boom on retry {job.retry_number}")


class FlakyRunnable(RecordingRunnable):
    """Fails while retry_number < state["fail_times"], then succeeds."""

    type_name = "test.Flaky"

    def run(self, job: Job, dispatch_unit_id: str) -> None:
        RUN_LOG.append((self.type_name, job.job_id))
        if job.retry_number < int(job.state.get("fail_times", "1")):
            raise RuntimeError("not yet")
        job.state["done"] = "yes"


class RemoveOnSuccessRunnable(RecordingRunnable):
    type_name = "test.RemoveOnSuccess"

    def on_success(self, job: Job) -> bool:
        super().on_success(job)
        return False


class RemoveOnFailureRunnable(FailingRunnable):
    type_name = "test.RemoveOnFailure"

    def on_failure(self, job: Job, error: BaseException) -> bool:
        super().on_failure(job, error)
        return False


class CancelOnErrorRunnable(FailingRunnable):
    type_name = "test.CancelOnError"

    def on_error(self, job: Job, error: BaseException) -> JobStatus:
        super().on_error(job, error)
        return JobStatus.CANCELLED


class BadOnErrorRunnable(FailingRunnable):
    """on_error returns a status it is not allowed to return."""

    type_name = "test.BadOnError"

    def on_error(self, job: Job, error: BaseException) -> JobStatus:
        return JobStatus.SUCCEEDED


class RaisingOnSuccessRunnable(RecordingRunnable):
    type_name = "test.RaisingOnSuccess"

    def on_success(self, job: Job) -> bool:
        raise ValueError("on_success exploded")


class RaisingOnFailureRunnable(FailingRunnable):
    type_name = "test.RaisingOnFailure"

    def on_failure(self, job: Job, error: BaseException) -> bool:
        raise ValueError("on_failure exploded")


class DropOnCancelRunnable(RecordingRunnable):
    type_name = "test.DropOnCancel"

    def on_cancellation(self, job: Job) -> bool:
        super().on_cancellation(job)
        return False


class RaisingOnCancelRunnable(RecordingRunnable):
    type_name = "test.RaisingOnCancel"

    def on_cancellation(self, job: Job) -> bool:
        raise ValueError("on_cancellation exploded")


SCRIPTED_RUNNABLES = (
    RecordingRunnable,
    PairRunnable,
    FailingRunnable,
    FlakyRunnable,
    RemoveOnSuccessRunnable,
    RemoveOnFailureRunnable,
    CancelOnErrorRunnable,
    BadOnErrorRunnable,
    RaisingOnSuccessRunnable,
    RaisingOnFailureRunnable,
    DropOnCancelRunnable,
    RaisingOnCancelRunnable,
)


@pytest.fixture(autouse=True)
def clear_logs():
    RUN_LOG.clear()
    HOOK_LOG.clear()
    yield
    RUN_LOG.clear()
    HOOK_LOG.clear()


@pytest.fixture
def run_log() -> list[tuple[str, str]]:
    return RUN_LOG


@pytest.fixture
def hook_log() -> list[tuple[str, str]]:
    return HOOK_LOG


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def temp_db_path() -> Generator[str, None, None]:
    """Create a temporary database file."""
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    yield db_path

    # Cleanup
    Path(db_path).unlink(missing_ok=True)
    # Also cleanup WAL and SHM files
    Path(f"{db_path}-wal").unlink(missing_ok=True)
    Path(f"{db_path}-shm").unlink(missing_ok=True)


@pytest.fixture
def store(temp_db_path: str) -> JobStore:
    """A JobStore with no change listeners (nothing is promoted or dispatched)."""
    return JobStore(temp_db_path, codec=StateCodec(chunk_size=16))


# =============================================================================
# Component Fixtures
# =============================================================================


@pytest.fixture
def registry() -> RunnableRegistry:
    registry = RunnableRegistry()
    for runnable_class in SCRIPTED_RUNNABLES:
        registry.register(runnable_class.type_name, runnable_class)
    return registry


@pytest.fixture
def config() -> SchedulerConfig:
    """No idle pause, so passes with nothing to dispatch finish at once."""
    return SchedulerConfig(idle_delay_ms=0, max_batch=50, chunk_size=64)


@pytest.fixture
def host() -> InlineDispatchHost:
    return InlineDispatchHost()


@pytest.fixture
def scheduler(store: JobStore, registry: RunnableRegistry, config: SchedulerConfig) -> Scheduler:
    """A Scheduler over the listener-free store, with its own inline host."""
    return Scheduler(
        store=store,
        registry=registry,
        host=InlineDispatchHost(),
        owner_id=OWNER_ID,
        config=config,
    )


@pytest.fixture
def service(
    temp_db_path: str,
    registry: RunnableRegistry,
    config: SchedulerConfig,
    host: InlineDispatchHost,
) -> SchedulerService:
    """Fully wired service; units run only via host.run_pending()."""
    return SchedulerService.create(
        db_path=temp_db_path,
        owner_id=OWNER_ID,
        registry=registry,
        config=config,
        host=host,
    )


@pytest.fixture
def submit(service: SchedulerService) -> Callable[..., Job]:
    """Create and queue one job through the queue manager."""

    def _submit(runnable_type: str = RecordingRunnable.type_name, **kwargs) -> Job:
        manager = service.queue_manager
        [job] = manager.queue_jobs([manager.create_job(runnable_type, **kwargs)])
        return job

    return _submit


@pytest.fixture
def insert_job(store: JobStore) -> Callable[..., Job]:
    """Write a job straight to the listener-free store in any status."""

    def _insert(
        runnable_type: str = RecordingRunnable.type_name,
        status: JobStatus = JobStatus.QUEUED,
        owner_id: str = OWNER_ID,
        scheduled_run_time: str = None,
        state: dict = None,
        **kwargs,
    ) -> Job:
        job = Job.create(runnable_type, owner_id, state=state, **kwargs)
        job.status = status
        job.scheduled_run_time = scheduled_run_time or now_iso()
        [job] = store.persist(owner_id, [job], save_state=True)
        return job

    return _insert
