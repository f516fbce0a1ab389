"""
Tests for the scheduler router.
"""


class TestSchedulerStatus:
    """Tests for GET /scheduler/status."""

    def test_status(self, client):
        data = client.get("/scheduler/status").json()

        assert data["running"] is False
        assert data["owner_id"] == "api-owner"
        assert data["schedulable"] == 0
        assert data["runnable_types"] == ["api.Broken", "api.Echo"]
        assert data["config"]["idle_delay_ms"] == 0

    def test_status_counts_backlog(self, client):
        client.post("/jobs", json={"runnable_type": "api.Echo"})

        data = client.get("/scheduler/status").json()

        assert data["schedulable"] == 1
        assert data["active_schedulers"] == 1


class TestSchedulerKick:
    """Tests for POST /scheduler/kick."""

    def test_kick_with_nothing_to_do(self, client):
        data = client.post("/scheduler/kick").json()

        assert data["started"] is False
        assert data["scheduler_job_id"] is None

    def test_kick_while_pass_active(self, client):
        client.post("/jobs", json={"runnable_type": "api.Echo"})

        assert client.post("/scheduler/kick").json()["started"] is False

    def test_kick_starts_pass_for_waiting_jobs(self, client, api_service):
        from asyncjobs.scheduler import JobStatus, SCHEDULER_TYPE

        job = client.post("/jobs", json={"runnable_type": "api.Echo"}).json()
        # Simulate a scheduling pass lost with its process
        store = api_service.store
        stale = store.get_jobs_by_status(
            api_service.owner_id, [JobStatus.RUNNING], runnable_type=SCHEDULER_TYPE
        )
        store.remove(api_service.owner_id, stale)

        data = client.post("/scheduler/kick").json()
        api_service.host.run_pending()

        assert data["started"] is True
        assert data["scheduler_job_id"]
        assert client.get(f"/jobs/{job['job_id']}").json()["status"] == "SUCCEEDED"


class TestHealth:
    def test_health_is_open(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
