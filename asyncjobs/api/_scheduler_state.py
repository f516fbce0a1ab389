"""
Scheduler state management for API integration.

Provides singleton access to the SchedulerService instance.

Usage:
    from ._scheduler_state import get_scheduler_service, init_scheduler_service

    # In lifespan:
    init_scheduler_service()

    # In routers:
    service = get_scheduler_service()
"""

import logging
import os
from pathlib import Path
from typing import Optional

from asyncjobs.scheduler import (
    DispatchHost,
    RunnableRegistry,
    SchedulerConfig,
    SchedulerService,
)


logger = logging.getLogger(__name__)


DEFAULT_DB_PATH = "data/asyncjobs.db"
DEFAULT_OWNER_ID = "default"

# Global scheduler service instance
_scheduler_service: Optional[SchedulerService] = None


def init_scheduler_service(
    db_path: Optional[str | Path] = None,
    owner_id: Optional[str] = None,
    registry: Optional[RunnableRegistry] = None,
    config: Optional[SchedulerConfig] = None,
    host: Optional[DispatchHost] = None,
) -> SchedulerService:
    """
    Initialize the scheduler service singleton.

    Arguments left as None are read from the environment:
    ASYNCJOBS_DB_PATH, ASYNCJOBS_OWNER_ID, ASYNCJOBS_RUNNABLES
    (name=module:Class, comma separated) and the SchedulerConfig variables.

    Returns:
        Initialized SchedulerService (not started)
    """
    global _scheduler_service

    if _scheduler_service is not None:
        return _scheduler_service

    db_path = db_path or os.getenv("ASYNCJOBS_DB_PATH", DEFAULT_DB_PATH)
    owner_id = owner_id or os.getenv("ASYNCJOBS_OWNER_ID", DEFAULT_OWNER_ID)
    if registry is None:
        registry = RunnableRegistry.from_spec(os.getenv("ASYNCJOBS_RUNNABLES", ""))
    if config is None:
        config = SchedulerConfig.from_env()

    Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    _scheduler_service = SchedulerService.create(
        db_path=db_path,
        owner_id=owner_id,
        registry=registry,
        config=config,
        host=host,
    )
    logger.info(f"Scheduler service initialized (db={db_path}, owner={owner_id})")

    return _scheduler_service


def get_scheduler_service() -> SchedulerService:
    """
    Get the scheduler service singleton.

    Raises:
        RuntimeError: If scheduler service not initialized
    """
    if _scheduler_service is None:
        raise RuntimeError(
            "Scheduler service not initialized. "
            "Ensure init_scheduler_service() is called during startup."
        )

    return _scheduler_service


def shutdown_scheduler_service() -> None:
    """Stop the scheduler service if running and drop the singleton."""
    global _scheduler_service

    if _scheduler_service is not None:
        if _scheduler_service.is_running:
            _scheduler_service.stop()

        _scheduler_service = None
