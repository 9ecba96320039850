# cli.py
from __future__ import annotations

import sys
from pathlib import Path
from typing import List, Optional, Sequence

import click

from monorun.change_analyzer import ProjectChangeAnalyzer
from monorun.config import DEFAULT_CONFIG_NAME, find_config, load_monorepo
from monorun.errors import ConfigurationError
from monorun.model import Monorepo
from monorun.operations import (
    Operation,
    OperationExecutionManager,
    OperationStatus,
    ShellOperationRunnerFactory,
    build_operations,
    phases_for_command,
    select_projects,
)
from monorun.operations.graph import topo_levels
from monorun.parameters import parse_custom_args
from monorun.ui.console import Console, get_console, set_console

EXIT_CANCELLED = 130


def _load(config_path: Optional[str]) -> Monorepo:
    path = Path(config_path) if config_path else find_config(Path("."))
    get_console().print_debug(f"Using config: {path}")
    return load_monorepo(path)


def _plan(
    repo: Monorepo,
    command_name: str,
    extra_args: Sequence[str],
    *,
    to: Sequence[str],
    only: Sequence[str],
    use_cache: bool,
    incremental: bool,
) -> List[Operation]:
    """Everything that can fail with a ConfigurationError, before anything runs."""
    phases = phases_for_command(repo, command_name)
    parse_custom_args(extra_args, repo.parameters)
    projects = select_projects(repo.projects, to=list(to), only=list(only))

    factory = ShellOperationRunnerFactory(
        custom_parameters=repo.parameters,
        build_cache_configuration=repo.build_cache if use_cache else None,
        change_analyzer=ProjectChangeAnalyzer(repo.projects),
        is_incremental_build_allowed=incremental,
    )
    return build_operations(phases, projects, factory, all_projects=repo.projects)


def _report_configuration_error(e: ConfigurationError) -> None:
    details: List[str] = []
    if e.project:
        details.append(f"project={e.project}")
    if e.phase:
        details.append(f"phase={e.phase}")
    details.extend(f"{k}={v}" for k, v in e.details.items())

    suggestion = None
    if e.kind == "ConfigNotFound":
        suggestion = f"Create a {DEFAULT_CONFIG_NAME} at the repository root or pass one explicitly:\n  monorun --config path/to/{DEFAULT_CONFIG_NAME} run build"
    elif e.kind == "MissingScript":
        suggestion = "Add the script to the project's package.json, or set ignore_missing_script=True on the phase."

    get_console().print_error(f"Configuration error ({e.kind})", e.message, details=details or None, suggestion=suggestion)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    envvar="MONORUN_DEBUG",
    help="Enable debug mode (show stack traces and full operation output)",
)
@click.option(
    "--config",
    "config_path",
    default=None,
    envvar="MONORUN_CONFIG",
    help=f"Config file path (defaults to the nearest {DEFAULT_CONFIG_NAME})",
)
@click.pass_context
def cli(ctx, debug, config_path):
    """monorun: phased, cache-aware monorepo build orchestrator."""
    console = Console(debug=debug)
    set_console(console)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug
    ctx.obj["config_path"] = config_path


@cli.command(context_settings={"ignore_unknown_options": True, "allow_extra_args": True})
@click.argument("command_name")
@click.option("--to", "-t", "to", multiple=True, help="Run for this project and everything it depends on")
@click.option("--only", "-o", "only", multiple=True, help="Run for exactly this project")
@click.option("--parallelism", "-p", default=None, type=int, envvar="MONORUN_PARALLELISM",
              help="Maximum number of concurrent operations (default: CPU count - 1)")
@click.option("--cache/--no-cache", "use_cache", default=True, show_default=True, help="Use the build cache when configured")
@click.option("--incremental/--no-incremental", default=True, show_default=True,
              help="Reuse results of unchanged projects")
@click.option("--fail-fast/--no-fail-fast", default=False, show_default=True,
              help="Stop starting new operations after the first failure")
@click.option("--grace-period", default=5.0, type=float, show_default=True,
              help="Seconds to wait for a process to exit after terminate before killing it")
@click.pass_context
def run(ctx, command_name, to, only, parallelism, use_cache, incremental, fail_fast, grace_period):
    """Run COMMAND_NAME for every selected project. Extra options are custom parameters."""
    console = get_console()

    try:
        repo = _load(ctx.obj.get("config_path"))
        operations = _plan(
            repo,
            command_name,
            ctx.args,
            to=to,
            only=only,
            use_cache=use_cache,
            incremental=incremental,
        )
    except ConfigurationError as e:
        _report_configuration_error(e)
        sys.exit(1)

    manager = OperationExecutionManager(
        operations,
        parallelism=parallelism,
        fail_fast=fail_fast,
        grace_period=grace_period,
    )

    try:
        console.print_run_started(
            repository=repo.root.name,
            command=command_name,
            operation_count=len(operations),
            parallelism=manager.parallelism,
        )
        result = manager.execute()
        console.print_results(result)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(EXIT_CANCELLED)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if result.status is OperationStatus.FAILURE:
        sys.exit(1)
    if result.status is OperationStatus.CANCELLED:
        sys.exit(EXIT_CANCELLED)


@cli.command(context_settings={"ignore_unknown_options": True, "allow_extra_args": True})
@click.argument("command_name")
@click.option("--to", "-t", "to", multiple=True, help="Run for this project and everything it depends on")
@click.option("--only", "-o", "only", multiple=True, help="Run for exactly this project")
@click.pass_context
def graph(ctx, command_name, to, only):
    """Print the operations COMMAND_NAME would run, in dependency order."""
    console = get_console()
    try:
        repo = _load(ctx.obj.get("config_path"))
        operations = _plan(
            repo,
            command_name,
            ctx.args,
            to=to,
            only=only,
            use_cache=False,
            incremental=False,
        )
    except ConfigurationError as e:
        _report_configuration_error(e)
        sys.exit(1)

    console.print_graph(topo_levels(operations))


if __name__ == "__main__":
    cli()
