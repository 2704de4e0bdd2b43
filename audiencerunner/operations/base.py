"""Base protocols and registry for audiencerunner operations.

This module defines the core abstractions:
- Operation: a callable taking a Job tree and returning a Job tree
- AudienceService: interface to the audience backend (external collaborator)
- OperationContext: shared collaborators and the per-invocation time budget
- OperationRegistry: fixed operation name -> operation mapping
"""

import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional, Protocol, runtime_checkable

from audiencerunner.errors import PermanentError, RegistryFrozenError
from audiencerunner.log_store import LogStore
from audiencerunner.schemas import AudienceCreateJob, AudienceUpdateJob, Job

Operation = Callable[[Job], Job]


@runtime_checkable
class AudienceService(Protocol):
    """Protocol for the audience backend.

    Row-listing methods read the audience sheet; create/update talk to the
    advertising API. Both are outside the scheduling core.
    """

    def list_new_audiences(self) -> list[dict[str, Any]]:
        """Rows describing audiences to create.

        Each row carries name, description, lifespan, floodlight_id, shared
        and optionally relationship + rules.
        """
        ...

    def list_audience_updates(self) -> list[dict[str, Any]]:
        """Rows describing edits to existing audiences (audience_id + changed fields)."""
        ...

    def list_audiences(self) -> list[dict[str, Any]]:
        """Rows for every known audience."""
        ...

    def create_audience(self, job: AudienceCreateJob) -> str:
        """Create the audience and return its id.

        Raises:
            TransientError / PermanentError on failure
        """
        ...

    def update_audience(self, job: AudienceUpdateJob) -> None:
        """Apply job.changed_attributes to the audience."""
        ...


class Deadline:
    """Wall-clock budget for one invocation."""

    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self.seconds = seconds
        self.expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self.expires_at - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self.expires_at


@dataclass
class OperationContext:
    """Collaborators shared by operations.

    budget_seconds should stay below the host's execution ceiling so a
    batch operation can return before the host kills the invocation.
    """

    audience_service: Optional[AudienceService] = None
    log_store: Optional[LogStore] = None
    budget_seconds: float = 300.0
    clock: Callable[[], float] = field(default=time.monotonic)

    def deadline(self) -> Deadline:
        return Deadline(self.budget_seconds, self.clock)

    def require_audience_service(self) -> AudienceService:
        if self.audience_service is None:
            raise PermanentError("No audience service configured")
        return self.audience_service

    def require_log_store(self) -> LogStore:
        if self.log_store is None:
            raise PermanentError("No log store configured")
        return self.log_store


@dataclass(frozen=True)
class RegisteredOperation:
    """An operation plus how the dispatcher should treat its job.

    auto_start: start a pending rebuilt job before calling the operation.
        Log maintenance operations leave their job untouched.
    """

    name: str
    fn: Operation
    auto_start: bool = True

    def __call__(self, job: Job) -> Job:
        return self.fn(job)


class OperationRegistry:
    """
    Registry mapping operation names to operations.

    Built once at startup and then frozen; lookups afterwards see a
    read-only mapping.

    Usage:
        registry = OperationRegistry.create_default(context)
        op = registry.get("createAudiences")
    """

    def __init__(self) -> None:
        self._operations: dict[str, RegisteredOperation] = {}
        self._frozen = False

    def register(self, name: str, fn: Operation, auto_start: bool = True) -> None:
        """Register an operation by name.

        Raises:
            RegistryFrozenError: If the registry was already frozen
        """
        if self._frozen:
            raise RegistryFrozenError(f"Cannot register '{name}': registry is frozen")
        self._operations[name] = RegisteredOperation(name, fn, auto_start)

    def freeze(self) -> "OperationRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> RegisteredOperation:
        """Get an operation by name.

        Raises:
            KeyError: If the name is not registered
        """
        if name not in self._operations:
            raise KeyError(f"Unknown operation: {name}. Registered: {self.list_names()}")
        return self._operations[name]

    def __contains__(self, name: object) -> bool:
        return name in self._operations

    def list_names(self) -> list[str]:
        return sorted(self._operations)

    def as_mapping(self) -> Mapping[str, RegisteredOperation]:
        return MappingProxyType(self._operations)

    @classmethod
    def create_default(cls, context: OperationContext) -> "OperationRegistry":
        """Registry with every audience and log operation, frozen."""
        from audiencerunner.operations import audiences, logs

        registry = cls()
        audiences.register(registry, context)
        logs.register(registry, context)
        return registry.freeze()
