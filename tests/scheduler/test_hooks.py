"""
Change Hook Tests.

- PENDING jobs are validated and promoted to QUEUED (retry 0, due now)
- Invalid runnable types reject the whole batch
- Changes to CANCELLED run on_cancellation exactly once
- One scheduling pass is requested per persisted batch
"""

from unittest.mock import MagicMock

import pytest

from asyncjobs.scheduler import (
    InvalidRunnableError,
    Job,
    JobLifecycleHook,
    JobStatus,
    SCHEDULER_TYPE,
)

from .conftest import OWNER_ID


@pytest.fixture
def hooked_store(store, registry):
    """Listener-free store with a hook whose scheduler is a mock."""
    scheduler = MagicMock()
    store.add_listener(JobLifecycleHook(store, registry, scheduler))
    return store, scheduler


class TestPromotion:
    def test_pending_job_is_promoted(self, service):
        manager = service.queue_manager
        [job] = manager.queue_jobs([manager.create_job("test.Succeed")])

        stored = service.store.get_job(OWNER_ID, job.job_id)
        assert stored.status in (JobStatus.QUEUED, JobStatus.RUNNING)
        assert stored.retry_number == 0
        assert stored.scheduled_run_time is not None

    def test_promotion_resets_retry_number(self, hooked_store):
        store, _ = hooked_store
        job = Job.create("test.Succeed", OWNER_ID, maximum_retries=3)
        job.retry_number = 2

        store.persist(OWNER_ID, [job])

        stored = store.get_job(OWNER_ID, job.job_id)
        assert stored.status == JobStatus.QUEUED
        assert stored.retry_number == 0

    def test_unregistered_type_is_rejected(self, hooked_store):
        store, scheduler = hooked_store

        with pytest.raises(InvalidRunnableError):
            store.persist(OWNER_ID, [Job.create("test.Unregistered", OWNER_ID)])

        assert store.list_jobs(OWNER_ID) == []
        scheduler.queue.assert_not_called()

    def test_one_invalid_job_rejects_the_batch(self, hooked_store):
        store, _ = hooked_store
        jobs = [
            Job.create("test.Succeed", OWNER_ID),
            Job.create("test.Unregistered", OWNER_ID),
        ]

        with pytest.raises(InvalidRunnableError):
            store.persist(OWNER_ID, jobs)

        assert store.list_jobs(OWNER_ID) == []

    def test_non_pending_jobs_are_not_revalidated(self, hooked_store, insert_job):
        store, _ = hooked_store
        job = insert_job("test.Succeed", status=JobStatus.FAILED)
        job.runnable_type = "test.Unregistered"

        store.persist(OWNER_ID, [job])

        assert store.get_job(OWNER_ID, job.job_id).status == JobStatus.FAILED


class TestSchedulingTrigger:
    def test_one_pass_per_batch(self, hooked_store):
        store, scheduler = hooked_store

        store.persist(OWNER_ID, [Job.create("test.Succeed", OWNER_ID) for _ in range(3)])

        scheduler.queue.assert_called_once_with()

    def test_scheduler_job_writes_do_not_trigger(self, hooked_store):
        store, scheduler = hooked_store

        store.persist(OWNER_ID, [Job.create(SCHEDULER_TYPE, OWNER_ID)])

        scheduler.queue.assert_not_called()

    def test_cancellation_does_not_trigger(self, hooked_store, insert_job):
        store, scheduler = hooked_store
        job = insert_job()
        job.status = JobStatus.CANCELLED
        scheduler.queue.reset_mock()

        store.persist(OWNER_ID, [job])

        scheduler.queue.assert_not_called()

    def test_batch_submission_starts_one_unit(self, service, host):
        manager = service.queue_manager
        manager.queue_jobs([manager.create_job("test.Pair") for _ in range(3)])

        assert len(host.started_units) == 1

    def test_pass_request_wakes_a_parked_scheduler_job(self, hooked_store):
        store, scheduler = hooked_store

        store.persist(OWNER_ID, [Job.create("test.Succeed", OWNER_ID)])

        scheduler.wake.assert_called_once_with()

    def test_failed_pass_does_not_fail_the_write(self, hooked_store):
        store, scheduler = hooked_store
        scheduler.queue.side_effect = RuntimeError("host down")

        [job] = store.persist(OWNER_ID, [Job.create("test.Succeed", OWNER_ID)])

        assert store.get_job(OWNER_ID, job.job_id).status == JobStatus.QUEUED


class TestCancellation:
    def test_cancellation_hook_runs_once(self, service, submit, hook_log):
        job = submit()

        service.queue_manager.cancel_jobs([job.job_id])
        service.queue_manager.cancel_jobs([job.job_id])

        stored = service.store.get_job(OWNER_ID, job.job_id)
        stored.reference = "touched"
        service.store.persist(OWNER_ID, [stored])

        assert hook_log == [("on_cancellation", job.job_id)]
        assert service.store.get_job(OWNER_ID, job.job_id).status == JobStatus.CANCELLED

    def test_inserting_cancelled_job_runs_hook(self, hooked_store, hook_log):
        store, _ = hooked_store
        job = Job.create("test.Succeed", OWNER_ID)
        job.status = JobStatus.CANCELLED

        store.persist(OWNER_ID, [job])

        assert hook_log == [("on_cancellation", job.job_id)]

    def test_on_cancellation_false_deletes_job(self, service, submit, hook_log):
        job = submit("test.DropOnCancel")

        service.queue_manager.cancel_jobs([job.job_id])

        assert service.store.get_jobs(OWNER_ID, [job.job_id]) == []
        assert hook_log == [("on_cancellation", job.job_id)]

    def test_on_cancellation_error_forces_failed(self, service, submit):
        job = submit("test.RaisingOnCancel")

        service.queue_manager.cancel_jobs([job.job_id])

        assert service.store.get_job(OWNER_ID, job.job_id).status == JobStatus.FAILED
        [record] = service.store.list_exceptions(OWNER_ID, job.job_id)
        assert record.message.startswith("on_cancellation raised")
