"""
Scheduler configuration.

Tunables are passed explicitly into the components that need them;
`from_env()` is the only place the environment is read.
"""

import os
from dataclasses import dataclass

from .errors import InvalidOperationError


# Defaults
DEFAULT_IDLE_DELAY_MS = 1000
DEFAULT_MAX_BATCH = 50
DEFAULT_CHUNK_SIZE = 131072

# Environment variable names
ENV_IDLE_DELAY_MS = "ASYNCJOBS_IDLE_DELAY_MS"
ENV_MAX_BATCH = "ASYNCJOBS_MAX_BATCH"
ENV_CHUNK_SIZE = "ASYNCJOBS_CHUNK_SIZE"


@dataclass(frozen=True)
class SchedulerConfig:
    """
    Scheduler tunables.

    Attributes:
        idle_delay_ms: How long a scheduler-job with nothing to dispatch
            pauses before finishing (and re-checking for work)
        max_batch: Jobs considered per selection pass
        chunk_size: Maximum characters per stored state chunk
    """

    idle_delay_ms: int = DEFAULT_IDLE_DELAY_MS
    max_batch: int = DEFAULT_MAX_BATCH
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self):
        if self.idle_delay_ms < 0:
            raise InvalidOperationError(f"idle_delay_ms must be >= 0, got {self.idle_delay_ms}")
        if self.max_batch < 1:
            raise InvalidOperationError(f"max_batch must be >= 1, got {self.max_batch}")
        if self.chunk_size < 1:
            raise InvalidOperationError(f"chunk_size must be >= 1, got {self.chunk_size}")

    @classmethod
    def from_env(cls) -> "SchedulerConfig":
        """Build a config from ASYNCJOBS_* environment variables."""
        return cls(
            idle_delay_ms=int(os.getenv(ENV_IDLE_DELAY_MS, DEFAULT_IDLE_DELAY_MS)),
            max_batch=int(os.getenv(ENV_MAX_BATCH, DEFAULT_MAX_BATCH)),
            chunk_size=int(os.getenv(ENV_CHUNK_SIZE, DEFAULT_CHUNK_SIZE)),
        )
