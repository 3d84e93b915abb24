# Copyright (c) Syntropy Systems
"""mlfuzz list, show and export commands."""
from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape
from rich.table import Table

from mlfuzz.artifacts import (
    find_result_dir,
    list_runs,
    list_triages,
    read_run_status,
    read_triage_summary,
)
from mlfuzz.cli.common import EXIT_FAILURE, console, get_state
from mlfuzz.cli.run import print_run_status
from mlfuzz.cli.triage import VERDICT_STYLE, print_triage_summary
from mlfuzz.models import RunStatus, TriageSummary


def _load_record(data_dir: Path, result_id: str) -> RunStatus | TriageSummary:
    result_dir = find_result_dir(data_dir, result_id)
    if result_dir is None:
        console.print(f"[red]Error:[/red] Result {escape(result_id)} not found")
        raise typer.Exit(EXIT_FAILURE)
    record = (
        read_run_status(result_dir)
        if result_id.startswith("run-")
        else read_triage_summary(result_dir)
    )
    if record is None:
        console.print(
            f"[red]Error:[/red] {escape(result_id)} has no readable status "
            "(still running or aborted?)"
        )
        raise typer.Exit(EXIT_FAILURE)
    return record


def list_results(
    ctx: typer.Context,
    last: int = typer.Option(
        20,
        "--last", "-n",
        help="Number of runs and triage sessions to show",
    ),
) -> None:
    """List runs and triage sessions, newest first."""
    data_dir = get_state(ctx).data_dir
    run_dirs = list_runs(data_dir)[:last]
    triage_dirs = list_triages(data_dir)[:last]

    if not run_dirs and not triage_dirs:
        console.print("[dim]No results found[/dim]")
        return

    if run_dirs:
        table = Table(title="Runs", show_header=True, header_style="bold")
        table.add_column("ID", style="dim")
        table.add_column("Target")
        table.add_column("Total", justify="right")
        table.add_column("Success", justify="right")
        table.add_column("Failed", justify="right")
        table.add_column("Timeout", justify="right")
        for run_dir in run_dirs:
            status = read_run_status(run_dir)
            if status is None:
                table.add_row(run_dir.name, "-", "-", "-", "-", "[dim]incomplete[/dim]")
                continue
            table.add_row(
                status.run_id,
                status.target,
                str(status.total),
                f"[green]{status.success}[/green]",
                f"[red]{status.failed}[/red]" if status.failed else "0",
                f"[yellow]{status.timeout}[/yellow]" if status.timeout else "0",
            )
        console.print(table)

    if triage_dirs:
        table = Table(title="Triage", show_header=True, header_style="bold")
        table.add_column("ID", style="dim")
        table.add_column("Target")
        table.add_column("Input")
        table.add_column("Verdict")
        for triage_dir in triage_dirs:
            summary = read_triage_summary(triage_dir)
            if summary is None:
                table.add_row(triage_dir.name, "-", "-", "[dim]incomplete[/dim]")
                continue
            style = VERDICT_STYLE.get(summary.verdict, "white")
            table.add_row(
                summary.triage_id,
                summary.target,
                escape(Path(summary.input).name),
                f"[{style}]{summary.verdict}[/{style}]",
            )
        console.print(table)


def show(
    ctx: typer.Context,
    result_id: str = typer.Argument(
        ...,
        help="Result ID to show (run-<ts> or triage-<ts>)",
    ),
) -> None:
    """Show details for one run or triage session."""
    record = _load_record(get_state(ctx).data_dir, result_id)
    if isinstance(record, RunStatus):
        print_run_status(record)
        console.print(f"  [dim]workers:[/dim] {record.workers}")
        console.print(f"  [dim]timeout:[/dim] {record.timeout_sec}s")
        console.print(f"  [dim]restart limit:[/dim] {record.restart_limit}")
        return

    print_triage_summary(record)
    console.print()
    table = Table(show_header=True, header_style="bold")
    table.add_column("#", justify="right")
    table.add_column("Result")
    table.add_column("Signature")
    for attempt in record.attempts:
        table.add_row(
            str(attempt.attempt),
            attempt.result,
            escape("\n".join(attempt.signature_top3)) or "-",
        )
    console.print(table)


def export(
    ctx: typer.Context,
    result_id: str = typer.Argument(
        ...,
        help="Result ID to export (run-<ts> or triage-<ts>)",
    ),
    output: Path = typer.Argument(..., help="Output file path (.json)"),
) -> None:
    """Export one run status or triage summary as JSON.

    Examples:
        mlfuzz export run-1718000000 run.json
        mlfuzz export triage-1718000123 triage.json

    """
    if output.suffix.lower() != ".json":
        console.print("[red]Output must be .json[/red]")
        raise typer.Exit(EXIT_FAILURE)

    record = _load_record(get_state(ctx).data_dir, result_id)
    output.parent.mkdir(parents=True, exist_ok=True)
    _ = output.write_text(record.model_dump_json(indent=2) + "\n", encoding="utf-8")
    console.print(f"[green]Exported {escape(result_id)} to {escape(str(output))}[/green]")
