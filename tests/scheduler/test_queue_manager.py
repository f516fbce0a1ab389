"""
Queue Manager Tests (admin surface).
"""

import pytest

from asyncjobs.scheduler import (
    InvalidOperationError,
    InvalidRunnableError,
    JobNotFoundError,
    JobStatus,
)

from .conftest import OWNER_ID


class TestCreateJob:
    def test_create_builds_unsaved_pending_job(self, service):
        job = service.queue_manager.create_job(
            "test.Succeed", reference="r1", maximum_retries=2, retry_interval=10, state={"k": "v"}
        )

        assert job.job_id is None
        assert job.status == JobStatus.PENDING
        assert job.owner_id == OWNER_ID
        assert job.state == {"k": "v"}

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"maximum_retries": -1},
            {"retry_interval": -5},
            {"state": {"k": 1}},
        ],
    )
    def test_create_rejects_invalid_settings(self, service, kwargs):
        with pytest.raises(InvalidOperationError):
            service.queue_manager.create_job("test.Succeed", **kwargs)

    def test_queue_rejects_unknown_type(self, service):
        manager = service.queue_manager

        with pytest.raises(InvalidRunnableError):
            manager.queue_jobs([manager.create_job("test.Unregistered")])


class TestQueries:
    def test_default_listing_shows_active_jobs(self, service, host, submit):
        done = submit()
        host.run_pending()
        waiting = submit(reference="waiting")

        listed = [job.job_id for job in service.queue_manager.get_jobs()]

        assert waiting.job_id in listed
        assert done.job_id not in listed

    def test_search_and_status_filters(self, service, submit):
        submit(reference="invoice-1")
        submit("test.Pair", reference="invoice-2")
        submit("test.Pair", reference="report")

        manager = service.queue_manager
        by_type = manager.get_jobs(statuses=None, runnable_search="Pair")
        by_ref = manager.get_jobs(statuses=None, reference_search="invoice")

        assert {j.reference for j in by_type} == {"invoice-2", "report"}
        assert {j.reference for j in by_ref} == {"invoice-1", "invoice-2"}

    def test_totals(self, service, host, submit):
        submit()
        submit("test.Fail")
        host.run_pending()
        submit("test.Pair")

        totals = service.queue_manager.get_totals()

        assert totals["SUCCEEDED"] == 1
        assert totals["FAILED"] == 1
        assert totals["QUEUED"] == 1
        assert set(totals) == {"QUEUED", "RUNNING", "SUCCEEDED", "FAILED", "CANCELLED"}

    def test_exceptions_for_unknown_job(self, service):
        with pytest.raises(JobNotFoundError):
            service.queue_manager.get_exceptions("nope")


class TestActions:
    def test_delete_counts_existing_jobs(self, service, submit):
        job = submit()

        assert service.queue_manager.delete_jobs([job.job_id, "nope"]) == 1
        assert service.store.get_jobs(OWNER_ID, [job.job_id]) == []

    def test_run_reruns_finished_job_from_retry_zero(self, service, host, submit, run_log):
        job = submit("test.Flaky", maximum_retries=1, state={"fail_times": "5"})
        host.run_pending()
        assert service.store.get_job(OWNER_ID, job.job_id).retry_number == 1

        [rerun] = service.queue_manager.run_jobs([job.job_id])

        assert rerun.status == JobStatus.QUEUED
        assert rerun.retry_number == 0
        host.run_pending()
        assert len(run_log) == 4

    def test_run_rejects_running_job(self, service, host, submit):
        job = submit()
        host.run_next()  # job is now RUNNING

        with pytest.raises(InvalidOperationError):
            service.queue_manager.run_jobs([job.job_id])

    def test_cancel_skips_terminal_jobs(self, service, host, submit):
        finished = submit()
        host.run_pending()
        waiting = submit()

        cancelled = service.queue_manager.cancel_jobs([finished.job_id, waiting.job_id])

        assert [j.job_id for j in cancelled] == [waiting.job_id]
        assert service.store.get_job(OWNER_ID, finished.job_id).status == JobStatus.SUCCEEDED
        assert service.store.get_job(OWNER_ID, waiting.job_id).status == JobStatus.CANCELLED
