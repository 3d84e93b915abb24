# Copyright (c) Syntropy Systems
"""mlfuzz triage command."""
from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Optional

import typer
from rich.markup import escape

from mlfuzz.cli.common import (
    EXIT_CONFIG,
    EXIT_TRIAGE_INFRA,
    console,
    get_state,
)
from mlfuzz.config import detect_timeout_command, load_config
from mlfuzz.errors import ConfigError, InfrastructureError
from mlfuzz.runner import HarnessExecutor
from mlfuzz.targets import TargetKind
from mlfuzz.triage import Verdict, execute_triage

if TYPE_CHECKING:
    from mlfuzz.models import TriageSummary
    from mlfuzz.triage import TriageAttempt

VERDICT_STYLE = {
    Verdict.REPRODUCED.value: "red",
    Verdict.FLAKY.value: "yellow",
    Verdict.FLAKY_STACK_MISMATCH.value: "yellow",
    Verdict.TIMEOUT.value: "magenta",
    Verdict.FAILED.value: "white",
}


def _print_attempt(attempt: TriageAttempt) -> None:
    console.print(f"  attempt {attempt.attempt}: {attempt.result.value}")
    for line in attempt.signature_top3:
        console.print(f"    [dim]{escape(line)}[/dim]")


def print_triage_summary(summary: TriageSummary) -> None:
    """Render a triage summary."""
    style = VERDICT_STYLE.get(summary.verdict, "white")
    console.print(f"[bold]Verdict:[/bold] [{style}]{summary.verdict}[/{style}]")
    console.print(f"  [dim]triage id:[/dim] {summary.triage_id}")
    console.print(f"  [dim]target:[/dim] {summary.target}")
    console.print(f"  [dim]input:[/dim] {escape(summary.input)}")
    console.print(
        f"  [dim]attempts:[/dim] {summary.success_count} success, "
        f"{summary.failed_count} failed, {summary.timeout_count} timeout"
    )
    consistent = "yes" if summary.signature_consistent else "no"
    console.print(f"  [dim]signature consistent:[/dim] {consistent}")


def triage(
    ctx: typer.Context,
    input_path: Path = typer.Option(
        ...,
        "--input", "-i",
        help="Input file to reproduce",
    ),
    target: Optional[TargetKind] = typer.Option(
        None,
        "--target", "-t",
        help="Format of the input (default: from the file extension)",
    ),
    retries: Optional[int] = typer.Option(
        None,
        "--retries", "-r",
        help="Number of reproduction attempts",
    ),
    timeout: Optional[int] = typer.Option(
        None,
        "--timeout",
        help="Seconds before an attempt counts as a timeout",
    ),
) -> None:
    """Reproduce one input repeatedly and classify how stable it is.

    Example:

        mlfuzz triage --input ./crashes/id-0042.gguf --retries 5
    """
    state = get_state(ctx)

    if target is None:
        target = TargetKind.from_path(input_path)
        if target is None:
            console.print(
                f"[red]Error:[/red] Cannot infer target from {escape(input_path.name)}, "
                "pass --target"
            )
            raise typer.Exit(EXIT_CONFIG)

    try:
        config = load_config(state.data_dir).with_overrides(
            repro_retries=retries,
            timeout_sec=timeout,
        )
        config.validate()
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_CONFIG) from e

    executor = HarnessExecutor(
        config.timeout_sec,
        timeout_command=detect_timeout_command(),
        env=config.harness_env(),
    )

    console.print(
        f"[blue]Triaging[/blue] {escape(str(input_path))} "
        f"({target.value}, {config.repro_retries} attempts)"
    )
    try:
        summary = execute_triage(
            executor,
            config,
            target,
            input_path,
            state.data_dir,
            on_attempt=_print_attempt,
        )
    except ConfigError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_CONFIG) from e
    except InfrastructureError as e:
        console.print(f"[red]Triage aborted:[/red] {escape(str(e))}")
        raise typer.Exit(EXIT_TRIAGE_INFRA) from e

    console.print()
    print_triage_summary(summary)
