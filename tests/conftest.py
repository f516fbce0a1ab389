"""
Pytest configuration and shared fixtures.
"""

import os

import pytest

from asyncjobs.scheduler import (
    InlineDispatchHost,
    Job,
    Runnable,
    RunnableRegistry,
    SchedulerConfig,
)


API_OWNER_ID = "api-owner"


class EchoRunnable(Runnable):
    """Copies state["message"] to state["echo"]."""

    def run(self, job: Job, dispatch_unit_id: str) -> None:
        job.state["echo"] = job.state.get("message", "")


class BrokenRunnable(Runnable):
    def run(self, job: Job, dispatch_unit_id: str) -> None:
        raise RuntimeError("broken on purpose")


@pytest.fixture(autouse=True, scope="function")
def reset_auth_env():
    """
    Run every test with API_AUTH_ENABLED=false unless it sets otherwise.

    Auth settings are read per request, so restoring the environment is
    enough to reset them.
    """
    original_auth_enabled = os.environ.get("API_AUTH_ENABLED")
    original_api_key = os.environ.get("API_KEY")

    os.environ["API_AUTH_ENABLED"] = "false"

    yield

    if original_auth_enabled is not None:
        os.environ["API_AUTH_ENABLED"] = original_auth_enabled
    elif "API_AUTH_ENABLED" in os.environ:
        del os.environ["API_AUTH_ENABLED"]

    if original_api_key is not None:
        os.environ["API_KEY"] = original_api_key
    elif "API_KEY" in os.environ:
        del os.environ["API_KEY"]


@pytest.fixture
def api_service(tmp_path):
    """Scheduler service singleton for the API, on an inline host."""
    from asyncjobs.api._scheduler_state import (
        init_scheduler_service,
        shutdown_scheduler_service,
    )

    registry = RunnableRegistry()
    registry.register("api.Echo", EchoRunnable)
    registry.register("api.Broken", BrokenRunnable)

    service = init_scheduler_service(
        db_path=tmp_path / "data" / "jobs.db",
        owner_id=API_OWNER_ID,
        registry=registry,
        config=SchedulerConfig(idle_delay_ms=0),
        host=InlineDispatchHost(),
    )

    yield service

    shutdown_scheduler_service()


@pytest.fixture
def client(api_service):
    """Test client; the lifespan is not run, the fixture provides the service."""
    from fastapi.testclient import TestClient

    from asyncjobs.api.main import app

    return TestClient(app)
