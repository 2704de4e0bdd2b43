"""Audience operations - create and update audiences, singly or in batches.

Single operations (createAudience, updateAudience) run one job body and let
failures propagate; the dispatcher turns them into an errored job.

Batch operations (createAudiences, updateAudiences, updateAllAudiences) work
on a parent job:
1. On the first call, discover rows from the audience service and add one
   child job per row
2. Run pending children one at a time until the invocation budget is spent
3. Complete the parent once every child is terminal, otherwise leave it
   RUNNING so the Runner calls again

A failing child is marked ERROR and the batch carries on with its siblings.
"""

import logging
from typing import Any, Callable

from audiencerunner.errors import PermanentError
from audiencerunner.job_util import job_from_dict
from audiencerunner.operations.base import OperationContext, OperationRegistry
from audiencerunner.schemas import AudienceCreateJob, AudienceUpdateJob, Job, JobType
from audiencerunner.utils import sanitize_error_message

logger = logging.getLogger(__name__)

# Attributes pushed by updateAllAudiences
ALL_ATTRIBUTES = ["name", "description", "lifespan", "shared"]


def _require(job: Job, cls: type, operation: str) -> None:
    if not isinstance(job, cls):
        raise PermanentError(
            f"{operation} expects a {cls.job_type.value} job, got {job.job_type.value}"
        )
    missing = job.missing_fields()
    if missing:
        raise PermanentError(f"Job {job.id} is missing required fields: {', '.join(missing)}")
    invalid = job.invalid_fields()
    if invalid:
        raise PermanentError(f"Job {job.id} has invalid fields: {'; '.join(invalid)}")


def create_audience(job: Job, context: OperationContext) -> Job:
    """Create one audience and record its id on the job."""
    _require(job, AudienceCreateJob, "createAudience")
    if not job.is_running():
        job.run()
    audience_id = context.require_audience_service().create_audience(job)
    job.audience_id = str(audience_id) if audience_id is not None else None
    job.log(f"Audience '{job.name}' created with id {job.audience_id}")
    return job.complete()


def update_audience(job: Job, context: OperationContext) -> Job:
    """Apply the changed attributes of one audience."""
    _require(job, AudienceUpdateJob, "updateAudience")
    if not job.is_running():
        job.run()
    context.require_audience_service().update_audience(job)
    changed = ", ".join(job.changed_attributes) or "no attributes"
    job.log(f"Audience {job.audience_id} updated ({changed})")
    return job.complete()


def _next_id(job: Job) -> int:
    return max((j.id for j in job.walk() if isinstance(j.id, int)), default=0) + 1


def _child_from_row(row: dict[str, Any], job_type: JobType, job_id: int) -> Job:
    """Child job for a discovered row; a row that cannot be decoded becomes an errored child."""
    try:
        data = dict(row)
        data.update({"id": job_id, "job_type": job_type.value, "status": "PENDING", "jobs": [], "logs": []})
        return job_from_dict(data)
    except Exception as e:
        logger.warning(f"Job {job_id}: could not decode row: {e}")
        child = job_from_dict({"id": job_id, "job_type": job_type.value})
        return child.error(f"Invalid row: {sanitize_error_message(e)}")


def run_batch(
    job: Job,
    context: OperationContext,
    discover: Callable[[], list[dict[str, Any]]],
    job_type: JobType,
    run_child: Callable[[Job, OperationContext], Job],
) -> Job:
    """Discover children on the first call, then run pending ones within budget."""
    if job.is_pending():
        job.run()

    if not job.jobs:
        rows = discover()
        for row in rows:
            job.add_job(_child_from_row(row, job_type, _next_id(job)))
        job.log(f"Found {len(rows)} audience(s) to process")
        logger.info(f"Job {job.id}: discovered {len(rows)} {job_type.value} job(s)")

    deadline = context.deadline()
    processed = 0
    for child in job.pending_jobs():
        # Always make progress, even on a tight budget
        if processed and deadline.expired():
            logger.info(f"Job {job.id}: budget spent after {processed} job(s), resuming next round")
            break
        try:
            run_child(child, context)
        except Exception as e:
            logger.warning(f"Job {child.id} failed: {e}")
            child.error(sanitize_error_message(e))
        processed += 1

    remaining = len(job.pending_jobs())
    failed = len(job.failed_jobs())
    if remaining:
        job.log(f"{len(job.jobs) - remaining} of {len(job.jobs)} done, {remaining} remaining")
        return job

    job.log(f"{len(job.jobs) - failed} succeeded, {failed} failed")
    return job.complete()


def register(registry: OperationRegistry, context: OperationContext) -> None:
    """Register the audience operations bound to a context."""
    service = context.require_audience_service

    def create_audiences(job: Job) -> Job:
        return run_batch(job, context, lambda: service().list_new_audiences(),
                         JobType.AUDIENCE_CREATE, create_audience)

    def update_audiences(job: Job) -> Job:
        return run_batch(job, context, lambda: service().list_audience_updates(),
                         JobType.AUDIENCE_UPDATE, update_audience)

    def update_all_audiences(job: Job) -> Job:
        def discover() -> list[dict[str, Any]]:
            return [dict(row, changed_attributes=list(ALL_ATTRIBUTES)) if isinstance(row, dict) else row
                    for row in service().list_audiences()]
        return run_batch(job, context, discover, JobType.AUDIENCE_UPDATE, update_audience)

    registry.register("createAudiences", create_audiences)
    registry.register("createAudience", lambda job: create_audience(job, context))
    registry.register("updateAudiences", update_audiences)
    registry.register("updateAudience", lambda job: update_audience(job, context))
    registry.register("updateAllAudiences", update_all_audiences)
