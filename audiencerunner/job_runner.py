"""JobRunner - wiring between configuration, the dispatcher and the Runner.

This module provides the main entry point for running a batch:
1. Builds shared collaborators (audience service, sheets, log store)
2. Builds the frozen operation registry and the dispatcher
3. Drives the operation with a Runner until every job is terminal

Usage:
    from audiencerunner.job_runner import run_operation

    jobs = run_operation("createAudiences", config=config)
"""

import logging
import time
from typing import Any, Optional

from audiencerunner.config import AudienceRunnerConfig
from audiencerunner.dispatch import Dispatcher
from audiencerunner.log_store import InMemorySheetsService, SheetLogStore, SheetsService
from audiencerunner.operations import AudienceService, OperationContext, OperationRegistry
from audiencerunner.runner import Runner
from audiencerunner.schemas import Job
from audiencerunner.utils import format_duration, load_service_factory

logger = logging.getLogger(__name__)


def _from_factory(factory_path: Optional[str], factory_args: Optional[dict[str, Any]]) -> Any:
    if not factory_path:
        return None
    factory = load_service_factory(factory_path)
    return factory(**(factory_args or {}))


def build_context(
    config: AudienceRunnerConfig,
    audience_service: Optional[AudienceService] = None,
    sheets: Optional[SheetsService] = None,
) -> OperationContext:
    """Create the operation context, loading services from config factories when not given."""
    if audience_service is None:
        audience_service = _from_factory(config.audience_service_factory, config.audience_service_factory_args)
    if sheets is None:
        sheets = _from_factory(config.sheets_service_factory, config.sheets_service_factory_args)
    if sheets is None:
        sheets = InMemorySheetsService()

    return OperationContext(
        audience_service=audience_service,
        log_store=SheetLogStore(sheets, config.log_sheet, config.log_start_cell),
        budget_seconds=config.invocation_budget_seconds,
    )


def build_dispatcher(config: AudienceRunnerConfig, context: OperationContext) -> Dispatcher:
    registry = OperationRegistry.create_default(context)
    return Dispatcher(registry, strict=config.validate_on_reconstruct)


def build_runner(config: AudienceRunnerConfig, dispatcher: Dispatcher, **kwargs: Any) -> Runner:
    """Runner talking to an in-process dispatcher."""
    return Runner(
        dispatcher.invoke,
        max_rounds=config.max_rounds,
        clear_logs_on_start=config.clear_logs_on_start,
        **kwargs,
    )


def run_operation(
    operation_name: str,
    jobs: Optional[list[Job]] = None,
    *,
    config: AudienceRunnerConfig,
    context: Optional[OperationContext] = None,
    raise_on_error: bool = True,
) -> list[Job]:
    """Run an operation to completion.

    Args:
        operation_name: Registered operation name (e.g., "createAudiences")
        jobs: Initial jobs; defaults to a single placeholder Job(id=1)
            whose children the operation discovers
        config: Configuration object
        context: Prebuilt operation context (built from config if omitted)
        raise_on_error: Raise BatchError when any job ends in ERROR

    Returns:
        The terminal jobs

    Raises:
        BatchError: One or more jobs ended in ERROR
        RoundLimitExceeded: config.max_rounds reached
    """
    if jobs is None:
        jobs = [Job(id=1)]
    if context is None:
        context = build_context(config)

    dispatcher = build_dispatcher(config, context)
    runner = build_runner(config, dispatcher)

    logger.info(f"Starting {operation_name} on {len(jobs)} job(s)")
    started = time.monotonic()
    try:
        return runner.run(operation_name, jobs, raise_on_error=raise_on_error)
    finally:
        logger.info(
            f"{operation_name} finished after {runner.rounds} round(s) "
            f"in {format_duration(time.monotonic() - started)}"
        )
