"""
Job Scheduler Core Module.

Durable, at-least-once job scheduling on a host that starts only one
dispatch unit per execution context:
- JobStore: owner-scoped persistence of jobs, state chunks and exceptions
- StateCodec: chunked state serialization
- Runnable / RunnableRegistry: pluggable job logic
- Scheduler: per-type capped selection and self-chaining dispatch
- Continuation / JobLifecycleHook: retry, failure and cancellation handling
- RecoveryManager: startup cleanup after an unclean stop
"""

from .entities import (
    JobStatus,
    Job,
    JobStateChunk,
    JobException,
    SCHEDULER_TYPE,
)
from .errors import (
    SchedulerError,
    InvalidOperationError,
    InvalidRunnableError,
    JobNotFoundError,
    ConcurrencyViolationError,
    DecodeError,
    QuotaError,
    DispatchUnitLostError,
)
from .config import SchedulerConfig
from .codec import StateCodec
from .runnable import Runnable, RunnableRegistry
from .persistence import JobStore
from .dispatch import DispatchHost, InlineDispatchHost, ThreadDispatchHost
from .scheduler import Scheduler, SchedulerRunnable
from .continuation import Continuation
from .hooks import JobLifecycleHook
from .executor import JobExecutor
from .queue_manager import QueueManager
from .recovery import RecoveryManager
from .service import SchedulerService

__all__ = [
    # Entities
    "JobStatus",
    "Job",
    "JobStateChunk",
    "JobException",
    "SCHEDULER_TYPE",
    # Errors
    "SchedulerError",
    "InvalidOperationError",
    "InvalidRunnableError",
    "JobNotFoundError",
    "ConcurrencyViolationError",
    "DecodeError",
    "QuotaError",
    "DispatchUnitLostError",
    # Config
    "SchedulerConfig",
    # Codec
    "StateCodec",
    # Runnables
    "Runnable",
    "RunnableRegistry",
    # Persistence
    "JobStore",
    # Dispatch
    "DispatchHost",
    "InlineDispatchHost",
    "ThreadDispatchHost",
    # Scheduler
    "Scheduler",
    "SchedulerRunnable",
    # Post-execution
    "Continuation",
    "JobLifecycleHook",
    "JobExecutor",
    # Management
    "QueueManager",
    "RecoveryManager",
    # Service
    "SchedulerService",
]
