"""audiencerunner operations package.

Provides the named operations the dispatcher can invoke:
- createAudiences / createAudience
- updateAudiences / updateAudience / updateAllAudiences
- clearLogs / writeLogs

Each operation takes a Job tree and returns a Job tree. Operations are
bound to an OperationContext and collected in an OperationRegistry that is
built once at startup and then frozen.
"""

from audiencerunner.operations.base import (
    AudienceService,
    Deadline,
    Operation,
    OperationContext,
    OperationRegistry,
    RegisteredOperation,
)

__all__ = [
    "AudienceService",
    "Deadline",
    "Operation",
    "OperationContext",
    "OperationRegistry",
    "RegisteredOperation",
]
