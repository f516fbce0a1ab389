"""
Tests for the API's scheduler service singleton and lifespan.
"""

import logging
import os
from unittest.mock import patch

import pytest

from asyncjobs.api import _scheduler_state
from asyncjobs.infra.logging_config import LOGGER_NAME
from asyncjobs.scheduler import Job, Runnable, ThreadDispatchHost


class EnvEchoRunnable(Runnable):
    def run(self, job: Job, dispatch_unit_id: str) -> None:
        job.state["echo"] = "env"


@pytest.fixture
def env(tmp_path):
    return {
        "ASYNCJOBS_DB_PATH": str(tmp_path / "state" / "jobs.db"),
        "ASYNCJOBS_OWNER_ID": "env-owner",
        "ASYNCJOBS_RUNNABLES": f"env.Echo={EnvEchoRunnable.__module__}:EnvEchoRunnable",
        "ASYNCJOBS_IDLE_DELAY_MS": "5",
        "ASYNCJOBS_LOG_DIR": str(tmp_path / "logs"),
    }


@pytest.fixture
def restore_package_logger():
    logger = logging.getLogger(LOGGER_NAME)
    handlers = list(logger.handlers)
    propagate = logger.propagate

    yield

    for handler in logger.handlers:
        if handler not in handlers:
            handler.close()
    logger.handlers[:] = handlers
    logger.propagate = propagate


class TestSchedulerState:
    def test_get_before_init_raises(self):
        with pytest.raises(RuntimeError):
            _scheduler_state.get_scheduler_service()

    def test_init_reads_environment(self, env):
        with patch.dict(os.environ, env):
            service = _scheduler_state.init_scheduler_service()

        try:
            assert service.owner_id == "env-owner"
            assert service.registry.is_registered("env.Echo")
            assert service.config.idle_delay_ms == 5
            assert isinstance(service.host, ThreadDispatchHost)
            assert os.path.exists(env["ASYNCJOBS_DB_PATH"])
            assert _scheduler_state.get_scheduler_service() is service
            assert _scheduler_state.init_scheduler_service() is service
        finally:
            _scheduler_state.shutdown_scheduler_service()

        with pytest.raises(RuntimeError):
            _scheduler_state.get_scheduler_service()


class TestLifespan:
    def test_lifespan_starts_and_stops_service(self, env, restore_package_logger):
        from fastapi.testclient import TestClient

        from asyncjobs.api.main import app

        with patch.dict(os.environ, env):
            with TestClient(app) as client:
                status = client.get("/scheduler/status").json()
                service = _scheduler_state.get_scheduler_service()

        assert status["running"] is True
        assert status["owner_id"] == "env-owner"
        assert not service.is_running
        with pytest.raises(RuntimeError):
            _scheduler_state.get_scheduler_service()
