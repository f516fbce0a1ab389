"""
Dispatch hosts.

The host is the environment that actually runs dispatch units. It imposes
one restriction the scheduler is built around: inside one execution context
at most one new unit may be started with start_unit(); a second attempt
raises QuotaError and the caller falls back to defer_unit().

Every unit runs in a fresh execution context:
    runner.run_unit(job_id, unit_id)              # context 1
    runner.complete_unit(job_id, unit_id, error)  # context 2 (continuation)

Calls made outside any unit context (API requests, startup) are not limited.
"""

import logging
import threading
from collections import deque
from contextlib import contextmanager
from typing import Iterator, Optional, Protocol

from .entities import generate_uuid
from .errors import QuotaError


logger = logging.getLogger(__name__)


class UnitRunner(Protocol):
    """What a host executes for each dispatch unit."""

    def run_unit(self, job_id: str, unit_id: str) -> None:
        ...

    def complete_unit(
        self,
        job_id: str,
        unit_id: str,
        error: Optional[BaseException],
    ) -> None:
        ...


class DispatchHost(Protocol):
    """Protocol for the host's dispatch primitive."""

    def start_unit(self, job_id: str) -> str:
        """Start a unit now. Raises QuotaError if this context already started one."""
        ...

    def defer_unit(self, job_id: str, delay_ms: int = 0) -> str:
        """Start a unit later, outside the caller's context (no quota)."""
        ...


class _ExecutionContext:
    def __init__(self):
        self.started = False


class BaseDispatchHost:
    """
    Quota bookkeeping and unit execution shared by the concrete hosts.
    """

    def __init__(self, runner: Optional[UnitRunner] = None):
        self._runner = runner
        self._local = threading.local()

    def set_runner(self, runner: UnitRunner) -> None:
        """Set the runner executed for each unit. Must be called before dispatch."""
        self._runner = runner

    @contextmanager
    def execution_context(self) -> Iterator[None]:
        """Run the enclosed code as one execution context (one start allowed)."""
        previous = getattr(self._local, "context", None)
        self._local.context = _ExecutionContext()
        try:
            yield
        finally:
            self._local.context = previous

    def _claim_start(self) -> None:
        context = getattr(self._local, "context", None)
        if context is None:
            return
        if context.started:
            raise QuotaError("Only one dispatch unit may be started per execution context")
        context.started = True

    def _execute(self, job_id: str, unit_id: str) -> None:
        """Run one unit, then its completion, each in a fresh context."""
        if self._runner is None:
            raise RuntimeError("Unit runner not set. Call set_runner() first.")

        error: Optional[BaseException] = None
        with self.execution_context():
            try:
                self._runner.run_unit(job_id, unit_id)
            except Exception as e:
                error = e

        with self.execution_context():
            try:
                self._runner.complete_unit(job_id, unit_id, error)
            except Exception:
                logger.exception(f"Completion of unit {unit_id} (job {job_id}) failed")


class ThreadDispatchHost(BaseDispatchHost):
    """
    Runs each dispatch unit on its own daemon thread.

    Deferred units are started by a threading.Timer.
    """

    def __init__(self, runner: Optional[UnitRunner] = None):
        super().__init__(runner)
        self._lock = threading.Lock()
        self._threads: set[threading.Thread] = set()
        self._timers: set[threading.Timer] = set()
        self._stopping = False

    def start_unit(self, job_id: str) -> str:
        self._ensure_running()
        self._claim_start()

        unit_id = generate_uuid()
        self._spawn(job_id, unit_id)
        logger.debug(f"Started unit {unit_id} for job {job_id}")
        return unit_id

    def defer_unit(self, job_id: str, delay_ms: int = 0) -> str:
        self._ensure_running()

        unit_id = generate_uuid()
        timer = threading.Timer(delay_ms / 1000.0, self._fire_timer, args=(job_id, unit_id))
        timer.daemon = True

        with self._lock:
            self._timers.add(timer)
        timer.start()

        logger.debug(f"Deferred unit {unit_id} for job {job_id} by {delay_ms}ms")
        return unit_id

    def _fire_timer(self, job_id: str, unit_id: str) -> None:
        with self._lock:
            self._timers = {t for t in self._timers if t is not threading.current_thread()}
            if self._stopping:
                return
        self._spawn(job_id, unit_id)

    def _spawn(self, job_id: str, unit_id: str) -> None:
        thread = threading.Thread(
            target=self._run_thread,
            args=(job_id, unit_id),
            name=f"unit-{unit_id[:8]}",
            daemon=True,
        )
        with self._lock:
            self._threads.add(thread)
        thread.start()

    def _run_thread(self, job_id: str, unit_id: str) -> None:
        try:
            self._execute(job_id, unit_id)
        finally:
            with self._lock:
                self._threads.discard(threading.current_thread())

    def _ensure_running(self) -> None:
        if self._stopping:
            raise RuntimeError("Dispatch host is shut down")

    @property
    def active_units(self) -> int:
        with self._lock:
            return len(self._threads)

    def shutdown(self, timeout: float = 30.0) -> None:
        """
        Stop accepting units, cancel deferred ones and wait for running ones.

        Running units are not interrupted.
        """
        with self._lock:
            self._stopping = True
            timers = list(self._timers)
            self._timers.clear()
            threads = list(self._threads)

        for timer in timers:
            timer.cancel()

        for thread in threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning(f"Unit thread {thread.name} did not stop within timeout")


class InlineDispatchHost(BaseDispatchHost):
    """
    Queues units and runs them on demand in the calling thread.

    Deterministic: units run in the order they were started or deferred
    (deferral delays are not waited for). Used by tests and single-process
    batch runs.
    """

    def __init__(self, runner: Optional[UnitRunner] = None):
        super().__init__(runner)
        self._pending: deque[tuple[str, str]] = deque()
        self.started_units: list[tuple[str, str]] = []
        self.deferred_units: list[tuple[str, str]] = []

    def start_unit(self, job_id: str) -> str:
        self._claim_start()

        unit_id = generate_uuid()
        self._pending.append((job_id, unit_id))
        self.started_units.append((job_id, unit_id))
        return unit_id

    def defer_unit(self, job_id: str, delay_ms: int = 0) -> str:
        unit_id = generate_uuid()
        self._pending.append((job_id, unit_id))
        self.deferred_units.append((job_id, unit_id))
        return unit_id

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def run_next(self) -> bool:
        """Run the oldest pending unit. Returns False if nothing was pending."""
        if not self._pending:
            return False

        job_id, unit_id = self._pending.popleft()
        self._execute(job_id, unit_id)
        return True

    def run_pending(self, max_units: int = 1000) -> int:
        """
        Run pending units (including ones they start) until none remain.

        Args:
            max_units: Safety cap on the number of units executed

        Returns:
            Number of units executed
        """
        executed = 0
        while executed < max_units and self.run_next():
            executed += 1

        if self._pending:
            logger.warning(f"Stopped with {len(self._pending)} units still pending")

        return executed
