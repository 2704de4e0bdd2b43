"""Log operations - maintain the append-only log store.

writeLogs writes the job's logs at job.offset and advances the offset by
the number of lines written. A job without logs writes nothing and keeps
its offset. clearLogs empties the store and resets the offset to 0.
"""

import logging

from audiencerunner.operations.base import OperationContext, OperationRegistry
from audiencerunner.schemas import Job

logger = logging.getLogger(__name__)


def write_logs(job: Job, context: OperationContext) -> Job:
    entries = list(job.logs)
    if entries:
        start = job.offset
        job.offset = context.require_log_store().log(entries, start)
        logger.debug(f"Wrote {len(entries)} log line(s) at offset {start}")
    job.clear_logs()
    return job.complete()


def clear_logs(job: Job, context: OperationContext) -> Job:
    context.require_log_store().clear()
    job.offset = 0
    job.clear_logs()
    logger.debug("Cleared log store")
    return job.complete()


def register(registry: OperationRegistry, context: OperationContext) -> None:
    """Register the log operations; they never auto-start their job."""
    registry.register("writeLogs", lambda job: write_logs(job, context), auto_start=False)
    registry.register("clearLogs", lambda job: clear_logs(job, context), auto_start=False)
