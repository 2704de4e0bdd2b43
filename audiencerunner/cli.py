"""
CLI interface for audiencerunner.

Provides commands to run audience batches to completion, invoke the bounded
entry point directly, and inspect registered operations.
"""


import json
import sys
from pathlib import Path

import click
from rich.table import Table
from rich.tree import Tree

from audiencerunner import __version__


@click.group()
@click.version_option(version=__version__, prog_name="audiencerunner")
@click.pass_context
def main(ctx):
    """
    audiencerunner - Resumable batch jobs for audience tools.

    Runs audience operations as job trees, re-invoking the bounded entry
    point until every job is complete or failed.
    """
    from audiencerunner.config import AudienceRunnerConfig, load_config
    from audiencerunner.utils import setup_logging

    ctx.ensure_object(dict)
    try:
        config = load_config()
    except FileNotFoundError:
        # no config.yaml yet: run on defaults
        config = AudienceRunnerConfig()
    except Exception as e:
        # init can still repair it; run and invoke refuse to start
        ctx.obj["config_error"] = str(e)
        config = AudienceRunnerConfig()
    ctx.obj["config"] = config
    setup_logging(config.log_level, config.log_format, config.get_log_file_path())


def _require_config(ctx) -> None:
    if ctx.obj.get("config_error"):
        click.echo(f"✗ Config not loaded: {ctx.obj['config_error']}", err=True)
        click.echo("Fix config.yaml or run 'audiencerunner init --force'.", err=True)
        raise SystemExit(1)


def _read_payload(payload: str | None) -> str:
    if payload:
        return payload
    if not sys.stdin.isatty():
        return sys.stdin.read().strip()
    raise click.UsageError(
        "No payload provided. Usage:\n"
        "  audiencerunner invoke OPERATION '{\"id\": 1}'\n"
        "  echo '{\"id\": 1}' | audiencerunner invoke OPERATION"
    )


def _job_tree(jobs) -> Tree:
    status_style = {"COMPLETE": "green", "ERROR": "red", "RUNNING": "yellow", "PENDING": "dim"}

    def label(job) -> str:
        style = status_style.get(job.status.value, "white")
        text = f"[{style}]{job.status.value}[/{style}] {job.job_type.value} {job.id}"
        if job.is_error():
            text += f" - {job.error_message}"
        return text

    def add(node, job):
        branch = node.add(label(job))
        for child in job.jobs:
            add(branch, child)

    root = Tree("jobs")
    for job in jobs:
        add(root, job)
    return root


def _error_table(errors) -> Table:
    table = Table(title="Failed jobs")
    table.add_column("job_id")
    table.add_column("operation")
    table.add_column("error")
    for record in errors:
        table.add_row(str(record.job_id), record.operation_name, record.error_message)
    return table


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize audiencerunner configuration."""
    import yaml
    from audiencerunner.config import AudienceRunnerConfig, get_audiencerunner_home

    home = get_audiencerunner_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(1)

    default_cfg = AudienceRunnerConfig(env_file=str(home / ".env")).to_dict()
    cfg_path.write_text(yaml.safe_dump(default_cfg, sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# GOOGLE_APPLICATION_CREDENTIALS=...\n# CM_PROFILE_ID=...\n")

    click.echo(f"Initialized audiencerunner config at {cfg_path}")


@main.command("invoke")
@click.argument("operation")
@click.argument("payload", required=False)
@click.pass_context
def invoke(ctx, operation: str, payload: str | None):
    """
    Invoke one operation once on a job payload.

    Prints the resulting job as JSON. On failure the errored job is
    printed and the exit code is 1.

    Examples:

        audiencerunner invoke clearLogs '{"id": 1}'

        cat job.json | audiencerunner invoke createAudiences
    """
    from audiencerunner.errors import InvocationError
    from audiencerunner.job_runner import build_context, build_dispatcher

    _require_config(ctx)
    config = ctx.obj["config"]
    dispatcher = build_dispatcher(config, build_context(config))

    try:
        click.echo(dispatcher.invoke(operation, _read_payload(payload)))
    except InvocationError as e:
        click.echo(e.payload)
        raise SystemExit(1)


@main.command("run")
@click.argument("operation")
@click.option("--jobs", "jobs_file", type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="JSON file with the initial job list (default: one placeholder job)")
@click.option("--output", type=click.Path(dir_okay=False, path_type=Path),
              help="Write the terminal job tree to this JSON file")
@click.option("--show-logs", is_flag=True, help="Print the log sheet after the run")
@click.pass_context
def run(ctx, operation: str, jobs_file: Path | None, output: Path | None, show_logs: bool):
    """
    Run an operation until every job is complete or failed.

    OPERATION is a registered operation name.

    Examples:

        audiencerunner run createAudiences

        audiencerunner run updateAudiences --jobs selected.json --output result.json
    """
    from audiencerunner.errors import BatchError, RoundLimitExceeded
    from audiencerunner.job_runner import build_context, run_operation
    from audiencerunner.job_util import jobs_from_json, jobs_to_json
    from audiencerunner.log_store import open_range
    from audiencerunner.utils import console, print_error, print_success

    _require_config(ctx)
    config = ctx.obj["config"]
    jobs = jobs_from_json(jobs_file.read_text()) if jobs_file else None
    context = build_context(config)

    failed = False
    try:
        result = run_operation(operation, jobs, config=config, context=context)
    except BatchError as e:
        result = e.jobs
        failed = True
        console.print(_error_table(e.errors))
    except RoundLimitExceeded as e:
        print_error(str(e))
        raise SystemExit(1)

    console.print(_job_tree(result))
    if output:
        output.write_text(jobs_to_json(result))

    if show_logs:
        sheets = context.log_store.sheets
        if hasattr(sheets, "get_values"):
            rows = sheets.get_values(config.log_sheet, open_range(config.log_start_cell, 2))
            table = Table(title=config.log_sheet)
            table.add_column("timestamp")
            table.add_column("message")
            for row in rows:
                table.add_row(*(str(v) for v in row))
            console.print(table)

    if failed:
        print_error(f"{operation} finished with errors")
        raise SystemExit(1)
    print_success(f"{operation} completed")


@main.group("operations")
def operations_group():
    """Inspect registered operations."""
    pass


@operations_group.command("list")
def list_operations():
    """List registered operation names."""
    from audiencerunner.operations import OperationContext, OperationRegistry

    registry = OperationRegistry.create_default(OperationContext())
    for name in registry.list_names():
        click.echo(name)


if __name__ == "__main__":
    main()
