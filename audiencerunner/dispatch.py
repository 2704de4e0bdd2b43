"""
Dispatcher - the bounded server-side entry point.

One call to Dispatcher.invoke is one host invocation:
1. Parse the JSON payload and rebuild the job tree
2. Start the job if it is still pending (for operations that auto-start)
3. Call the named operation with the job tree
4. Return the resulting tree as JSON

Error handling contract:
- Any failure during parse, rebuild or the operation is caught here
- The job (or an empty Job when none was rebuilt yet) is marked ERROR
- InvocationError is raised carrying the errored job as JSON, so the caller
  always has structured job state to decode
- Unknown operation names raise UnknownOperationError, which carries an
  errored job the same way

The dispatcher keeps no state between calls; everything needed to resume
travels in the job tree.
"""

import json
import logging
from typing import Optional

from audiencerunner.errors import InvocationError, UnknownOperationError
from audiencerunner.job_util import job_from_dict, job_to_json
from audiencerunner.operations import OperationRegistry
from audiencerunner.schemas import Job
from audiencerunner.utils import sanitize_error_message

logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Invoke registered operations on wire payloads.

    Usage:
        dispatcher = Dispatcher(OperationRegistry.create_default(context))
        result_json = dispatcher.invoke("createAudiences", job_json)
    """

    def __init__(self, registry: OperationRegistry, strict: bool = False):
        """
        Args:
            registry: Operations available to callers (the allow-list)
            strict: Reject payloads missing required variant fields at
                decode time instead of leaving it to the operation
        """
        self.registry = registry
        self.strict = strict

    def invoke(self, operation_name: str, payload: str) -> str:
        """
        Run one operation on one job tree.

        Args:
            operation_name: Registered operation name
            payload: Job tree as JSON

        Returns:
            Resulting job tree as JSON

        Raises:
            UnknownOperationError: If operation_name is not registered
            InvocationError: If parsing, rebuilding or the operation failed
        """
        if operation_name not in self.registry:
            message = f"Unknown operation: {operation_name}"
            logger.error(message)
            raise UnknownOperationError(message, self._errored_payload(None, message))

        operation = self.registry.get(operation_name)
        job: Optional[Job] = None
        try:
            job = job_from_dict(json.loads(payload), strict=self.strict)
            logger.info(
                f"Invoking {operation_name} on job {job.id}",
                extra={"operation": operation_name, "job_id": job.id},
            )
            if operation.auto_start and job.auto_run and job.is_pending():
                job.run()
            result = operation(job)
            if result is None:
                result = job
            return job_to_json(result)
        except Exception as e:
            message = sanitize_error_message(e)
            logger.error(
                f"{operation_name} failed: {message}",
                exc_info=True,
                extra={"operation": operation_name, "job_id": getattr(job, "id", None)},
            )
            raise InvocationError(message, self._errored_payload(job, message)) from e

    @staticmethod
    def _errored_payload(job: Optional[Job], message: str) -> str:
        job = job if job is not None else Job()
        job.error(message)
        try:
            return job_to_json(job)
        except (TypeError, ValueError) as e:
            # The tree itself cannot be encoded; report on a bare job
            logger.error(f"Could not encode job {job.id}: {e}")
            return job_to_json(Job(id=job.id, index=job.index).error(message))
