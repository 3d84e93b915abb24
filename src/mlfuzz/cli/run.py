# Copyright (c) Syntropy Systems
"""mlfuzz run command."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.markup import escape
from rich.table import Table

from mlfuzz.cli.common import (
    EXIT_CONFIG,
    EXIT_RUN_INFRA,
    console,
    get_state,
)
from mlfuzz.config import detect_timeout_command, load_config
from mlfuzz.errors import ConfigError, InfrastructureError
from mlfuzz.runner import HarnessExecutor, ResultKind
from mlfuzz.scheduler import execute_run
from mlfuzz.targets import TargetKind

if TYPE_CHECKING:
    from mlfuzz.artifacts import RunArtifacts
    from mlfuzz.models import RunStatus
    from mlfuzz.retry import JobOutcome
    from mlfuzz.scheduler import RunJob

_RESULT_STYLE = {
    ResultKind.SUCCESS: "green",
    ResultKind.FAILED: "red",
    ResultKind.TIMEOUT: "yellow",
}


def _print_job(outcome: JobOutcome) -> None:
    kind = outcome.result.kind
    style = _RESULT_STYLE[kind]
    retries = f" [dim](retries: {outcome.retries})[/dim]" if outcome.retries else ""
    console.print(
        f"[{style}]{kind.value:>7}[/{style}] job #{outcome.job.id:05d} "
        f"{escape(outcome.job.input.name)}{retries}"
    )


def _print_start(artifacts: RunArtifacts, jobs: list[RunJob], workers: int) -> None:
    console.print(f"[green]Started run:[/green] {artifacts.run_id}")
    console.print(f"  [dim]jobs:[/dim] {len(jobs)}")
    console.print(f"  [dim]workers:[/dim] {workers}")
    console.print(f"  [dim]logs:[/dim] {artifacts.logs_dir}")


def print_run_status(status: RunStatus) -> None:
    """Render a status record as a table."""
    table = Table(show_header=True, header_style="bold")
    table.add_column("Run", style="dim")
    table.add_column("Target")
    table.add_column("Total", justify="right")
    table.add_column("Success", justify="right", style="green")
    table.add_column("Failed", justify="right", style="red")
    table.add_column("Timeout", justify="right", style="yellow")
    table.add_column("Retries", justify="right")
    table.add_row(
        status.run_id,
        status.target,
        str(status.total),
        str(status.success),
        str(status.failed),
        str(status.timeout),
        str(status.retries),
    )
    console.print(table)


def run(
    ctx: typer.Context,
    target: TargetKind = typer.Option(
        ...,
        "--target", "-t",
        help="Format to fuzz",
    ),
    corpus: Optional[Path] = typer.Option(
        None,
        "--corpus", "-c",
        help="Corpus directory (default: <seeds-dir>/<target>)",
    ),
    workers: Optional[int] = typer.Option(
        None,
        "--workers", "-w",
        help="Concurrent harness workers",
    ),
    timeout: Optional[int] = typer.Option(
        None,
        "--timeout",
        help="Seconds before a harness invocation counts as a timeout",
    ),
    restart_limit: Optional[int] = typer.Option(
        None,
        "--restart-limit", "-r",
        help="Extra attempts for a job that did not succeed",
    ),
    max_jobs: Optional[int] = typer.Option(
        None,
        "--max-jobs", "-n",
        help="Only run the first N corpus files",
    ),
) -> None:
    """Run every corpus file of one format through the harness.

    Examples:

        mlfuzz run --target gguf

        mlfuzz run --target onnx --corpus ./crashes --workers 8 --timeout 30
    """
    state = get_state(ctx)
    corpus_dir = corpus if corpus is not None else state.seeds_dir / target.value

    try:
        config = load_config(state.data_dir).with_overrides(
            workers=workers,
            timeout_sec=timeout,
            restart_limit=restart_limit,
            max_jobs=max_jobs,
        )
        config.validate()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_CONFIG) from e

    timeout_command = detect_timeout_command()
    if timeout_command is None:
        console.print(
            "[yellow]Warning:[/yellow] 'timeout' not found, "
            "using the built-in watchdog"
        )
    executor = HarnessExecutor(
        config.timeout_sec,
        timeout_command=timeout_command,
        env=config.harness_env(),
    )

    try:
        status = execute_run(
            executor,
            config,
            target,
            corpus_dir,
            state.data_dir,
            on_job_done=_print_job,
            on_start=_print_start,
        )
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_CONFIG) from e
    except InfrastructureError as e:
        console.print(f"[red]Run aborted:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_RUN_INFRA) from e

    console.print()
    print_run_status(status)
