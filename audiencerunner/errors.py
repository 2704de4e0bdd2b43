"""
Error classes for audiencerunner.

These error types map onto the failure taxonomy of a batch run:
- TransientError / PermanentError: raised by collaborators (audience service,
  sheets). Neither is retried automatically; both end up as an errored job.
- ReconstructionError: a wire payload could not be decoded in strict mode.
- InvocationError: the bounded dispatch entry point failed. It always carries
  the errored job as JSON so the caller has structured state to decode.
- BatchError: the Runner finished and one or more jobs ended in ERROR.

Error handling contract:
- Nothing raw escapes Dispatcher.invoke; failures become errored jobs
- The Runner aggregates, it never fails fast on the first error
"""

from dataclasses import dataclass
from typing import Any


class AudienceRunnerError(Exception):
    """Base exception for audiencerunner."""
    pass


class ConfigError(AudienceRunnerError):
    """Configuration validation error."""
    pass


class TransientError(AudienceRunnerError):
    """
    Transient error raised by a collaborator.

    Examples:
    - Rate limit exceeded
    - Network timeout
    - Service temporarily unavailable

    Jobs are not retried automatically; the job is marked ERROR and
    reported like any other failure.
    """
    pass


class PermanentError(AudienceRunnerError):
    """
    Permanent error - the job cannot succeed as submitted.

    Examples:
    - Missing audience name or id
    - Invalid rule definition
    - Audience not found
    """
    pass


class ReconstructionError(PermanentError):
    """Raised when strict decoding finds a payload missing required fields."""
    pass


class RegistryFrozenError(AudienceRunnerError):
    """Raised when registering an operation after the registry was frozen."""
    pass


class InvocationError(AudienceRunnerError):
    """
    Failure of a single bounded invocation.

    Attributes:
        payload: JSON string of the errored job (never empty)
    """

    def __init__(self, message: str, payload: str):
        super().__init__(message)
        self.payload = payload


class UnknownOperationError(InvocationError):
    """Raised when an operation name is not in the registry."""
    pass


class RoundLimitExceeded(AudienceRunnerError):
    """Raised when a run does not reach a terminal state within max_rounds."""
    pass


@dataclass(frozen=True)
class JobErrorRecord:
    """One failed job in an aggregate batch error."""
    job_id: int | None
    operation_name: str
    error_message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "operation_name": self.operation_name,
            "error_message": self.error_message,
        }


class BatchError(AudienceRunnerError):
    """
    Aggregate failure raised by the Runner after a full run.

    Attributes:
        errors: One JobErrorRecord per job that ended in ERROR
        jobs: The complete result of the run, failed and completed jobs alike
    """

    def __init__(self, errors: list[JobErrorRecord], jobs: list):
        self.errors = list(errors)
        self.jobs = list(jobs)
        summary = "; ".join(
            f"job {e.job_id} ({e.operation_name}): {e.error_message}" for e in self.errors
        )
        super().__init__(f"{len(self.errors)} job(s) failed: {summary}")
