"""
Job schema - the unit of work and its state machine.

A Job is a recursive structure: it owns an ordered list of child jobs,
an ordered list of log entries, and a status that only changes through
explicit transitions (run, complete, error). Each transition appends a
log entry so every status change leaves a trace in the log store.

States:
    PENDING -> RUNNING -> {COMPLETE, ERROR}

Transitions do not check the source state: run() always leaves RUNNING,
complete() and error() always leave a terminal status.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterator, Optional, Union


class JobStatus(str, Enum):
    """Status of a job."""
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"

    @classmethod
    def parse(cls, value: Any) -> "JobStatus":
        """Parse a wire status, falling back to PENDING for unknown values."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return cls.PENDING


class JobType(str, Enum):
    """Tag selecting which variant a wire payload decodes into."""
    JOB = "JOB"
    AUDIENCE_CREATE = "AUDIENCE_CREATE"
    AUDIENCE_UPDATE = "AUDIENCE_UPDATE"


class LogEntry:
    """A timestamped log line produced while a job executed."""

    def __init__(self, message: str, timestamp: Optional[datetime] = None):
        self.message = message
        self.timestamp = timestamp or datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {"date": self.timestamp.isoformat(), "message": self.message}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, LogEntry):
            return NotImplemented
        return self.message == other.message and self.timestamp == other.timestamp

    def __repr__(self) -> str:
        return f"LogEntry({self.timestamp.isoformat()}, {self.message!r})"


# Logs rehydrated from the wire may be malformed; those stay raw dicts.
LogItem = Union[LogEntry, dict]


class Job:
    """
    A unit of work with status, logs, error and child jobs.

    Attributes:
        id: Identifier, unique within a batch
        index: Position among siblings
        logs: Ordered log entries
        jobs: Ordered child jobs (owned exclusively)
        offset: Cursor into the append-only log store
        error_message: Failure message, meaningful when status is ERROR
        job_type: Variant tag used when decoding from the wire
        auto_run: True for jobs rebuilt from the wire; the dispatcher starts
            such a job before handing it to an operation. Never serialized.
    """

    job_type = JobType.JOB

    def __init__(
        self,
        id: Optional[int] = None,
        index: int = 0,
        logs: Optional[list[LogItem]] = None,
        jobs: Optional[list["Job"]] = None,
        offset: int = 0,
        error_message: str = "",
        auto_run: bool = False,
    ):
        self.id = id
        self.index = index
        self.logs: list[LogItem] = list(logs) if logs else []
        self.jobs: list[Job] = list(jobs) if jobs else []
        self.offset = offset
        self.error_message = error_message
        self.auto_run = auto_run
        self._status = JobStatus.PENDING

    @property
    def status(self) -> JobStatus:
        return self._status

    # -- transitions ---------------------------------------------------------

    def run(self) -> "Job":
        """Move to RUNNING and log the start."""
        self._status = JobStatus.RUNNING
        self.log(f"{self._label()} started")
        return self

    def complete(self) -> "Job":
        """Move to COMPLETE and log the completion."""
        self._status = JobStatus.COMPLETE
        self.log(f"{self._label()} completed")
        return self

    def error(self, message: str) -> "Job":
        """Move to ERROR, keep the message and log it."""
        self._status = JobStatus.ERROR
        self.error_message = message
        self.log(f"{self._label()} failed: {message}")
        return self

    # -- predicates ----------------------------------------------------------

    def is_pending(self) -> bool:
        return self._status == JobStatus.PENDING

    def is_running(self) -> bool:
        return self._status == JobStatus.RUNNING

    def is_complete(self) -> bool:
        return self._status == JobStatus.COMPLETE

    def is_error(self) -> bool:
        return self._status == JobStatus.ERROR

    def is_terminal(self) -> bool:
        return self._status in (JobStatus.COMPLETE, JobStatus.ERROR)

    # -- tree helpers --------------------------------------------------------

    def log(self, message: str) -> LogEntry:
        """Append a log entry."""
        entry = LogEntry(message)
        self.logs.append(entry)
        return entry

    def clear_logs(self) -> None:
        self.logs = []

    def add_job(self, job: "Job") -> "Job":
        """Append a newly discovered child, assigning its sibling index."""
        job.index = len(self.jobs)
        self.jobs.append(job)
        return job

    def walk(self) -> Iterator["Job"]:
        """Yield this job and its descendants depth-first, in array order."""
        yield self
        for child in self.jobs:
            yield from child.walk()

    def pending_jobs(self) -> list["Job"]:
        """Direct children that have not reached a terminal status."""
        return [job for job in self.jobs if not job.is_terminal()]

    def failed_jobs(self) -> list["Job"]:
        """Direct children in ERROR."""
        return [job for job in self.jobs if job.is_error()]

    def params(self) -> dict[str, Any]:
        """Variant-specific parameters for the wire form (none for a plain job)."""
        return {}

    def _label(self) -> str:
        return f"Job {self.id}" if self.id is not None else "Job"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(id={self.id}, status={self._status.value}, "
            f"jobs={len(self.jobs)})"
        )
