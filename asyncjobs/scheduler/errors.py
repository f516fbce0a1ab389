"""
Scheduler-specific exceptions.

Taxonomy:
- Validation errors (InvalidRunnableError, InvalidOperationError): rejected
  before a state transition happens
- Infrastructure errors (JobNotFoundError, DecodeError, ...): surfaced to the
  caller of the failing store/codec operation
- QuotaError: the host refused to start another dispatch unit
"""


class SchedulerError(Exception):
    """Base exception for all scheduler errors."""
    pass


class InvalidOperationError(SchedulerError):
    """
    Raised when an operation violates scheduler invariants.

    Examples:
    - Re-running a RUNNING job
    - Negative retry counts or intervals
    """
    pass


class InvalidRunnableError(InvalidOperationError):
    """Raised when a runnable type does not name a registered Runnable."""

    def __init__(self, runnable_type: str, reason: str = "not a registered Runnable"):
        self.runnable_type = runnable_type
        super().__init__(f"Invalid runnable type '{runnable_type}': {reason}")


class JobNotFoundError(SchedulerError):
    """Raised when a requested job does not exist (or belongs to another owner)."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Job not found: {job_id}")


class ConcurrencyViolationError(SchedulerError):
    """
    Raised when a concurrent modification is detected.

    Used for atomic claim operations where the job was already claimed
    (or cancelled) by someone else.
    """

    def __init__(self, job_id: str, expected_status: str, actual_status: str):
        self.job_id = job_id
        self.expected_status = expected_status
        self.actual_status = actual_status
        super().__init__(
            f"Concurrency violation for job {job_id}: "
            f"expected status '{expected_status}', got '{actual_status}'"
        )


class DecodeError(SchedulerError):
    """Raised when job state chunks cannot be turned back into a state map."""
    pass


class QuotaError(SchedulerError):
    """Raised by a dispatch host when an execution context has used its start."""
    pass


class DispatchUnitLostError(SchedulerError):
    """Recorded for a RUNNING job whose dispatch unit never reported back."""
    pass
