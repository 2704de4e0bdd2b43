"""
Job wire codec - encode job trees to JSON and rebuild typed jobs from it.

Decoding is a closed-set dispatch on the job_type tag:

    JOB              -> Job
    AUDIENCE_CREATE  -> AudienceCreateJob
    AUDIENCE_UPDATE  -> AudienceUpdateJob

A missing or unknown tag decodes as a plain Job; it is never an error.

Status is not restored by assignment. Every decoded job starts PENDING with
auto_run set, and replay_status() drives it to the wire status through the
same run()/complete()/error() transitions used everywhere else. Each round
trip therefore adds one synthetic log line per non-pending job.

Wire keys are snake_case. On read, each key also accepts the legacy
trailing-underscore spelling (status_, jobs_, ...).
"""

import json
from datetime import datetime
from typing import Any, Callable

from audiencerunner.errors import ReconstructionError
from audiencerunner.schemas import (
    AudienceCreateJob,
    AudienceRule,
    AudienceUpdateJob,
    Job,
    JobStatus,
    JobType,
    LogEntry,
    Relationship,
    rule_from_dict,
)


def _get(data: dict[str, Any], key: str, default: Any = None) -> Any:
    if key in data:
        return data[key]
    return data.get(key + "_", default)


def replay_status(job: Job, status: JobStatus, error: str = "") -> Job:
    """Drive a freshly built job to `status` through its transitions."""
    if status == JobStatus.RUNNING:
        job.run()
    elif status == JobStatus.COMPLETE:
        job.complete()
    elif status == JobStatus.ERROR:
        job.error(error)
    return job


def log_from_dict(item: Any) -> Any:
    """
    Rehydrate a wire log entry.

    Entries with both a parseable date and a message become LogEntry;
    anything else (legacy or malformed entries) is passed through unchanged.
    """
    if not isinstance(item, dict):
        return item
    date, message = item.get("date"), item.get("message")
    if date is None or message is None:
        return item
    try:
        timestamp = datetime.fromisoformat(str(date).replace("Z", "+00:00"))
    except ValueError:
        return item
    return LogEntry(message, timestamp)


def log_to_dict(item: Any) -> Any:
    return item.to_dict() if isinstance(item, LogEntry) else item


def _job_type(data: dict[str, Any]) -> JobType:
    try:
        return JobType(_get(data, "job_type", JobType.JOB.value))
    except ValueError:
        return JobType.JOB


def _base_fields(data: dict[str, Any], strict: bool) -> dict[str, Any]:
    """Fields shared by every variant, children decoded recursively."""
    return {
        "id": _get(data, "id"),
        "index": _get(data, "index", 0) or 0,
        "logs": [log_from_dict(item) for item in _get(data, "logs") or []],
        "jobs": [job_from_dict(child, strict=strict) for child in _get(data, "jobs") or []],
        "offset": _get(data, "offset", 0) or 0,
        "error_message": _get(data, "error", "") or "",
        "auto_run": True,
    }


def _check_required(job: Job, strict: bool) -> None:
    if not strict:
        return
    missing = job.missing_fields()
    if missing:
        raise ReconstructionError(
            f"{job.job_type.value} job {job.id} is missing required fields: {', '.join(missing)}"
        )
    invalid = job.invalid_fields()
    if invalid:
        raise ReconstructionError(f"{job.job_type.value} job {job.id} has invalid fields: {'; '.join(invalid)}")


def _decode_job(data: dict[str, Any], strict: bool) -> Job:
    return Job(**_base_fields(data, strict))


def _decode_create(data: dict[str, Any], strict: bool) -> AudienceCreateJob:
    job = AudienceCreateJob(
        **_base_fields(data, strict),
        name=_get(data, "name"),
        description=_get(data, "description", "") or "",
        lifespan=_get(data, "lifespan"),
        floodlight_id=_get(data, "floodlight_id"),
        shared=bool(_get(data, "shared", False)),
        audience_id=_get(data, "audience_id"),
    )
    rules = _get(data, "rules") or []
    if rules:
        relationship = _get(data, "relationship")
        try:
            job.rule = AudienceRule(
                relationship=Relationship.parse(relationship),
                rules=[rule_from_dict(item) for item in rules],
            )
        except (ValueError, TypeError) as e:
            job.raw_rule = {"relationship": relationship, "rules": rules}
            job.rule_error = str(e)
    _check_required(job, strict)
    return job


def _decode_update(data: dict[str, Any], strict: bool) -> AudienceUpdateJob:
    job = AudienceUpdateJob(
        **_base_fields(data, strict),
        audience_id=_get(data, "audience_id"),
        name=_get(data, "name"),
        description=_get(data, "description"),
        lifespan=_get(data, "lifespan"),
        changed_attributes=_get(data, "changed_attributes") or [],
        shared=bool(_get(data, "shared", False)),
    )
    _check_required(job, strict)
    return job


_DECODERS: dict[JobType, Callable[[dict[str, Any], bool], Job]] = {
    JobType.JOB: _decode_job,
    JobType.AUDIENCE_CREATE: _decode_create,
    JobType.AUDIENCE_UPDATE: _decode_update,
}


def job_from_dict(data: dict[str, Any], strict: bool = False) -> Job:
    """
    Rebuild a job tree from its wire dict.

    Args:
        data: Parsed wire payload
        strict: Raise ReconstructionError when a variant lacks required fields
            instead of deferring the failure to the operation

    Returns:
        Job (or variant) with its wire status replayed

    Raises:
        ReconstructionError: If data is not an object, or strict checks fail
    """
    if not isinstance(data, dict):
        raise ReconstructionError(f"Job payload must be a JSON object, got {type(data).__name__}")

    job = _DECODERS[_job_type(data)](data, strict)
    status = JobStatus.parse(_get(data, "status", JobStatus.PENDING.value))
    return replay_status(job, status, job.error_message)


def job_to_dict(job: Job) -> dict[str, Any]:
    """Encode a job tree into its wire dict."""
    data: dict[str, Any] = {
        "id": job.id,
        "index": job.index,
        "status": job.status.value,
        "offset": job.offset,
        "error": job.error_message,
        "job_type": job.job_type.value,
        "logs": [log_to_dict(item) for item in job.logs],
        "jobs": [job_to_dict(child) for child in job.jobs],
    }
    data.update(job.params())
    return data


def job_to_json(job: Job) -> str:
    """Encode a job tree; values JSON cannot represent (dates, ids) are written as strings."""
    return json.dumps(job_to_dict(job), default=str)


def job_from_json(payload: str, strict: bool = False) -> Job:
    return job_from_dict(json.loads(payload), strict=strict)


def jobs_to_json(jobs: list[Job]) -> str:
    return json.dumps([job_to_dict(job) for job in jobs], default=str)


def jobs_from_json(payload: str, strict: bool = False) -> list[Job]:
    """Decode a JSON list of jobs (a single object is treated as a one-item list)."""
    data = json.loads(payload)
    if isinstance(data, dict):
        data = [data]
    return [job_from_dict(item, strict=strict) for item in data]
