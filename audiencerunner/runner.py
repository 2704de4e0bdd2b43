"""Runner - client-side driver for resumable batch operations.

A single invocation of the dispatch entry point may not finish a batch
within the host's time limit. The Runner keeps calling it, feeding back the
returned job tree, until every top-level job is COMPLETE or ERROR.

Each round:
1. Send every non-terminal top-level job through the transport, one at a
   time, and replace it with the decoded result
2. Flush the logs gathered anywhere in the tree to the log store via the
   writeLogs operation, then clear them locally

After the last round, every job in ERROR is collected and a single
BatchError carrying all of them (and the full result) is raised.

Usage:
    runner = Runner(dispatcher.invoke)
    jobs = runner.run("createAudiences", [Job(id=1)])
"""

import logging
from typing import Callable, Iterable, Optional

from audiencerunner.errors import BatchError, InvocationError, JobErrorRecord, RoundLimitExceeded
from audiencerunner.job_util import job_from_json, job_to_json
from audiencerunner.schemas import Job

logger = logging.getLogger(__name__)

# (operation_name, payload_json) -> result_json; raises InvocationError
Transport = Callable[[str, str], str]


def collect_errors(jobs: Iterable[Job], operation_name: str) -> list[JobErrorRecord]:
    """One record per job in ERROR, depth-first in array order."""
    return [
        JobErrorRecord(job_id=node.id, operation_name=operation_name, error_message=node.error_message)
        for job in jobs
        for node in job.walk()
        if node.is_error()
    ]


class Runner:
    """Drive repeated invocations until a batch of jobs is terminal."""

    def __init__(
        self,
        transport: Transport,
        max_rounds: int = 0,
        clear_logs_on_start: bool = False,
        flush_logs: bool = True,
        on_round: Optional[Callable[[int, list[Job]], None]] = None,
    ):
        """
        Args:
            transport: Callable invoking the dispatch entry point
            max_rounds: Upper bound on rounds; 0 means unlimited
            clear_logs_on_start: Call clearLogs before the first round
            flush_logs: Write logs to the log store between rounds
            on_round: Called after each round with the round number and jobs
        """
        self.transport = transport
        self.max_rounds = max_rounds
        self.clear_logs_on_start = clear_logs_on_start
        self.flush_logs = flush_logs
        self.on_round = on_round
        self.rounds = 0
        self.log_offset = 0

    def run(self, operation_name: str, jobs: Iterable[Job], raise_on_error: bool = True) -> list[Job]:
        """
        Run operation_name over jobs until every job is terminal.

        Args:
            operation_name: Registered operation name
            jobs: Ordered top-level jobs
            raise_on_error: Raise BatchError when any job ended in ERROR

        Returns:
            The terminal jobs, in input order

        Raises:
            BatchError: One or more jobs ended in ERROR (carries all jobs)
            RoundLimitExceeded: max_rounds reached with jobs still running
        """
        jobs = list(jobs)
        self.rounds = 0
        self.log_offset = max((job.offset for job in jobs), default=0)
        if self.clear_logs_on_start and self.flush_logs:
            self._clear_logs()

        while True:
            active = [i for i, job in enumerate(jobs) if not job.is_terminal()]
            if not active:
                break
            if self.max_rounds and self.rounds >= self.max_rounds:
                raise RoundLimitExceeded(
                    f"{operation_name}: {len(active)} job(s) still running after {self.rounds} round(s)"
                )

            self.rounds += 1
            logger.info(
                f"{operation_name}: round {self.rounds}, {len(active)} job(s) active",
                extra={"operation": operation_name, "round": self.rounds},
            )
            for i in active:
                jobs[i] = self._round_trip(operation_name, jobs[i])

            if self.flush_logs:
                self._flush_logs(jobs)
            if self.on_round is not None:
                self.on_round(self.rounds, jobs)

        errors = collect_errors(jobs, operation_name)
        logger.info(f"{operation_name}: finished in {self.rounds} round(s), {len(errors)} error(s)")
        if errors and raise_on_error:
            raise BatchError(errors, jobs)
        return jobs

    def _round_trip(self, operation_name: str, job: Job) -> Job:
        try:
            response = self.transport(operation_name, job_to_json(job))
        except InvocationError as e:
            logger.warning(f"{operation_name} failed for job {job.id}: {e}")
            result = job_from_json(e.payload)
            if result.id is None:
                result.id = job.id
                result.index = job.index
            return result
        return job_from_json(response)

    def _flush_logs(self, jobs: list[Job]) -> None:
        entries = [entry for job in jobs for node in job.walk() for entry in node.logs]
        if not entries:
            return

        log_job = Job(offset=self.log_offset, logs=entries)
        try:
            response = self.transport("writeLogs", job_to_json(log_job))
        except InvocationError as e:
            # Logs stay on the jobs and go out with the next flush
            logger.error(f"writeLogs failed at offset {self.log_offset}: {e}")
            return

        self.log_offset = max(self.log_offset, job_from_json(response).offset)
        for job in jobs:
            for node in job.walk():
                node.clear_logs()
            job.offset = self.log_offset

    def _clear_logs(self) -> None:
        try:
            response = self.transport("clearLogs", job_to_json(Job()))
        except InvocationError as e:
            logger.error(f"clearLogs failed: {e}")
            return
        self.log_offset = job_from_json(response).offset
