"""
Runnable contract and registry.

A Runnable is the pluggable unit of user logic executed for a job. Each
job's runnable_type names an entry in a RunnableRegistry; the registry is
filled once at startup and validated as entries are added.
"""

import importlib
import logging
from abc import ABC, abstractmethod
from typing import Callable, Union

from .entities import Job, JobStatus
from .errors import InvalidRunnableError


logger = logging.getLogger(__name__)


class Runnable(ABC):
    """
    Abstract base class for job logic.

    Implementations are instantiated fresh for every invocation, so they
    should keep no state between calls. Hooks returning bool decide whether
    the job record is kept (True) or deleted (False).
    """

    def maximum_active(self) -> int:
        """Concurrency cap: how many jobs of this type may be RUNNING at once."""
        return 1

    @abstractmethod
    def run(self, job: Job, dispatch_unit_id: str) -> None:
        """
        Execute the job's logic.

        May mutate job.state. Raise to signal failure, return to signal success.
        """
        ...

    def on_success(self, job: Job) -> bool:
        return True

    def on_failure(self, job: Job, error: BaseException) -> bool:
        """Called once retries are exhausted."""
        return True

    def on_cancellation(self, job: Job) -> bool:
        return True

    def on_error(self, job: Job, error: BaseException) -> JobStatus:
        """
        Called when a run fails but retries remain.

        Returns:
            JobStatus.QUEUED to retry, JobStatus.CANCELLED to abandon
        """
        return JobStatus.QUEUED


RunnableFactory = Union[type, Callable[[], Runnable]]


class RunnableRegistry:
    """
    Typed map from runnable type names to Runnable factories.

    Classes are checked when registered; plain factories are checked the
    first time they produce an instance.
    """

    def __init__(self):
        self._factories: dict[str, RunnableFactory] = {}
        self._verified: set[str] = set()

    def register(self, name: str, factory: RunnableFactory) -> None:
        """
        Register a Runnable subclass or zero-argument factory under `name`.

        Raises:
            InvalidRunnableError: If `factory` is a class that is not a Runnable
        """
        if isinstance(factory, type):
            if not issubclass(factory, Runnable):
                raise InvalidRunnableError(name, f"{factory.__name__} does not implement Runnable")
            self._verified.add(name)
        elif not callable(factory):
            raise InvalidRunnableError(name, "factory is not callable")
        else:
            self._verified.discard(name)

        self._factories[name] = factory
        logger.debug(f"Registered runnable type {name}")

    def is_registered(self, name: str) -> bool:
        return name in self._factories

    def names(self) -> list[str]:
        return sorted(self._factories)

    def create(self, name: str) -> Runnable:
        """
        Instantiate the Runnable registered under `name`.

        Raises:
            InvalidRunnableError: If the name is unknown or the factory
                produced something that is not a Runnable
        """
        factory = self._factories.get(name)
        if factory is None:
            raise InvalidRunnableError(name)

        instance = factory()

        if name not in self._verified:
            if not isinstance(instance, Runnable):
                raise InvalidRunnableError(
                    name, f"factory produced {type(instance).__name__}, not a Runnable"
                )
            self._verified.add(name)

        return instance

    def validate(self, name: str) -> None:
        """Raise InvalidRunnableError unless `name` is registered."""
        if name not in self._factories:
            raise InvalidRunnableError(name)

    @classmethod
    def from_spec(cls, spec: str) -> "RunnableRegistry":
        """
        Build a registry from "name=module:Class,name2=module:Class2".

        Used at process startup (ASYNCJOBS_RUNNABLES); each class is
        imported and validated once.
        """
        registry = cls()

        for entry in spec.split(","):
            entry = entry.strip()
            if not entry:
                continue

            name, sep, target = entry.partition("=")
            module_name, colon, class_name = target.partition(":")
            if not sep or not colon:
                raise InvalidRunnableError(entry, "expected name=module:Class")

            try:
                module = importlib.import_module(module_name.strip())
                runnable_class = getattr(module, class_name.strip())
            except (ImportError, AttributeError) as e:
                raise InvalidRunnableError(name.strip(), f"cannot import {target}: {e}") from e

            registry.register(name.strip(), runnable_class)

        return registry
