# Copyright (c) Syntropy Systems
"""mlfuzz harness command (internal, spawned by run and triage)."""

from pathlib import Path

import typer

from mlfuzz.config import load_config
from mlfuzz.harness import run_harness
from mlfuzz.targets import TargetKind


def harness(
    target: TargetKind = typer.Option(
        ...,
        "--target", "-t",
        help="Format to exercise",
    ),
    input_path: Path = typer.Option(
        ...,
        "--input", "-i",
        help="Input file",
    ),
) -> None:
    """Exercise one input in this process and print a four-line report.

    Exit status is 0 when the input parses, 1 otherwise. Probe settings are
    read from the MLFUZZ_* environment the parent passes down.
    """
    config = load_config(None)
    report = run_harness(
        target,
        input_path,
        probe_command=config.probes.get(target),
        direct_python=config.direct_python,
        probe_timeout=config.probe_timeout_sec,
    )
    for line in report.lines():
        typer.echo(line)
    raise typer.Exit(report.exit_code)
