"""
Scheduler Service - Main entry point for the job engine.

This service wires all components for one owner:
- JobStore (storage) with the JobLifecycleHook change listener
- Scheduler (selection + self-chaining dispatch)
- JobExecutor (dispatch unit body) and Continuation (post-execution)
- QueueManager (create/queue and admin operations)

Usage:
    registry = RunnableRegistry()
    registry.register("reports.Nightly", NightlyReport)
    service = SchedulerService.create(db_path, registry=registry)
    service.start()
    service.queue_manager.queue_jobs([service.queue_manager.create_job("reports.Nightly")])
    ...
    service.stop()
"""

import logging
from pathlib import Path
from typing import Optional

from .codec import StateCodec
from .config import SchedulerConfig
from .continuation import Continuation
from .dispatch import DispatchHost, ThreadDispatchHost
from .entities import Job, SCHEDULER_TYPE
from .executor import JobExecutor
from .hooks import JobLifecycleHook
from .persistence import JobStore
from .queue_manager import QueueManager
from .recovery import RecoveryManager
from .runnable import RunnableRegistry
from .scheduler import Scheduler, SchedulerRunnable


logger = logging.getLogger(__name__)


DEFAULT_OWNER_ID = "default"


class SchedulerService:
    """
    Coordinates all scheduler components for one owner.

    Provides:
    - Component initialization and wiring
    - Startup (initial scheduling pass) and graceful shutdown
    - Status for the admin surface
    """

    def __init__(
        self,
        store: JobStore,
        registry: RunnableRegistry,
        host: DispatchHost,
        scheduler: Scheduler,
        continuation: Continuation,
        executor: JobExecutor,
        queue_manager: QueueManager,
        recovery: RecoveryManager,
        owner_id: str,
        config: SchedulerConfig,
    ):
        """
        Initialize SchedulerService with all components.

        Use SchedulerService.create() for convenient construction.
        """
        self.store = store
        self.registry = registry
        self.host = host
        self.scheduler = scheduler
        self.continuation = continuation
        self.executor = executor
        self.queue_manager = queue_manager
        self.recovery = recovery
        self.owner_id = owner_id
        self.config = config

        self._started = False

    @classmethod
    def create(
        cls,
        db_path: str | Path,
        owner_id: str = DEFAULT_OWNER_ID,
        registry: Optional[RunnableRegistry] = None,
        config: Optional[SchedulerConfig] = None,
        host: Optional[DispatchHost] = None,
    ) -> "SchedulerService":
        """
        Create a SchedulerService with all components wired together.

        Args:
            db_path: Path to SQLite database
            owner_id: Owner scope of every job handled by this service
            registry: Runnable types available to jobs
            config: Scheduler tunables
            host: Dispatch host (threaded host if omitted)

        Returns:
            Configured SchedulerService
        """
        config = config or SchedulerConfig()
        registry = registry or RunnableRegistry()
        host = host or ThreadDispatchHost()

        store = JobStore(db_path, codec=StateCodec(config.chunk_size))

        scheduler = Scheduler(
            store=store,
            registry=registry,
            host=host,
            owner_id=owner_id,
            config=config,
        )
        registry.register(SCHEDULER_TYPE, lambda: SchedulerRunnable(scheduler))

        continuation = Continuation(store, registry, scheduler, owner_id)
        executor = JobExecutor(store, registry, continuation, owner_id)
        host.set_runner(executor)

        store.add_listener(JobLifecycleHook(store, registry, scheduler))

        return cls(
            store=store,
            registry=registry,
            host=host,
            scheduler=scheduler,
            continuation=continuation,
            executor=executor,
            queue_manager=QueueManager(store, owner_id),
            recovery=RecoveryManager(store, continuation, owner_id),
            owner_id=owner_id,
            config=config,
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self, run_recovery: bool = True) -> Optional[dict]:
        """
        Start the service and request a scheduling pass for jobs queued earlier.

        Args:
            run_recovery: Clean up after a previous process first

        Returns:
            Recovery statistics if recovery was run, None otherwise
        """
        if self._started:
            raise RuntimeError("Scheduler already started")

        logger.info(f"Starting scheduler service for owner {self.owner_id}...")

        recovery_stats = None
        if run_recovery:
            recovery_stats = self.recovery.recover_on_startup()

        self._started = True
        self.scheduler.queue()
        return recovery_stats

    def stop(self, timeout: float = 30.0) -> None:
        """
        Stop the service gracefully.

        Running units are not preempted; a parked scheduler-job is woken.
        """
        if not self._started:
            return

        logger.info("Stopping scheduler service...")
        self.scheduler.wake()

        shutdown = getattr(self.host, "shutdown", None)
        if shutdown is not None:
            shutdown(timeout=timeout)

        self._started = False
        logger.info("Scheduler service stopped")

    @property
    def is_running(self) -> bool:
        return self._started

    def request_pass(self) -> Optional[Job]:
        """Ask the Scheduler for a fresh pass (no-op if nothing is schedulable)."""
        return self.scheduler.queue()

    def get_status(self) -> dict:
        """Scheduler status for the admin surface."""
        return {
            "running": self.is_running,
            "owner_id": self.owner_id,
            "schedulable": self.store.count_schedulable(self.owner_id),
            "active_schedulers": self.store.count_active(self.owner_id, SCHEDULER_TYPE),
            "runnable_types": [
                name for name in self.registry.names() if name != SCHEDULER_TYPE
            ],
            "config": {
                "idle_delay_ms": self.config.idle_delay_ms,
                "max_batch": self.config.max_batch,
                "chunk_size": self.config.chunk_size,
            },
        }
