# Copyright (c) Syntropy Systems
"""mlfuzz report command."""
from __future__ import annotations

from collections import Counter

import typer
from rich.table import Table

from mlfuzz.artifacts import list_runs, list_triages, read_run_status, read_triage_summary
from mlfuzz.cli.common import console, get_state
from mlfuzz.cli.triage import VERDICT_STYLE
from mlfuzz.triage import Verdict


def report(ctx: typer.Context) -> None:
    """Aggregate every finished run and triage session per target."""
    data_dir = get_state(ctx).data_dir
    statuses = [s for s in map(read_run_status, list_runs(data_dir)) if s is not None]
    summaries = [
        s for s in map(read_triage_summary, list_triages(data_dir)) if s is not None
    ]

    if not statuses and not summaries:
        console.print("[dim]Nothing to report yet[/dim]")
        return

    if statuses:
        totals: dict[str, Counter[str]] = {}
        for status in statuses:
            counter = totals.setdefault(status.target, Counter())
            counter["runs"] += 1
            for key in ("total", "success", "failed", "timeout", "retries"):
                counter[key] += getattr(status, key)

        table = Table(title="Runs by target", show_header=True, header_style="bold")
        table.add_column("Target")
        for column in ("Runs", "Inputs", "Success", "Failed", "Timeout", "Retries"):
            table.add_column(column, justify="right")
        for target, counter in sorted(totals.items()):
            table.add_row(
                target,
                str(counter["runs"]),
                str(counter["total"]),
                str(counter["success"]),
                str(counter["failed"]),
                str(counter["timeout"]),
                str(counter["retries"]),
            )
        console.print(table)

    if summaries:
        verdicts = Counter(s.verdict for s in summaries)
        table = Table(title="Triage verdicts", show_header=True, header_style="bold")
        table.add_column("Verdict")
        table.add_column("Sessions", justify="right")
        for verdict in Verdict:
            count = verdicts.get(verdict.value, 0)
            if not count:
                continue
            style = VERDICT_STYLE[verdict.value]
            table.add_row(f"[{style}]{verdict.value}[/{style}]", str(count))
        console.print(table)
