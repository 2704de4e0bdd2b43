"""
audiencerunner.schemas - Job model for resumable batch execution.

Job -> AudienceCreateJob / AudienceUpdateJob

- Job: recursive unit of work with status, logs, error and child jobs
- AudienceCreateJob / AudienceUpdateJob: variants carrying audience parameters
- AudienceRule / RuleTerm: composable rule tree attached to create jobs
"""

from .job import (
    Job,
    JobStatus,
    JobType,
    LogEntry,
)
from .audience import (
    AudienceCreateJob,
    AudienceRule,
    AudienceUpdateJob,
    Relationship,
    RuleTerm,
    compose_rules,
    rule_from_dict,
)

__all__ = [
    # Job
    "Job",
    "JobStatus",
    "JobType",
    "LogEntry",
    # Audience variants
    "AudienceCreateJob",
    "AudienceUpdateJob",
    # Rules
    "AudienceRule",
    "Relationship",
    "RuleTerm",
    "compose_rules",
    "rule_from_dict",
]
