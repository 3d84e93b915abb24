# Copyright (c) Syntropy Systems
"""mlfuzz init command."""

import typer
import yaml
from rich.markup import escape

from mlfuzz.cli.common import EXIT_FAILURE, console, get_state
from mlfuzz.config import (
    CONFIG_FILENAME,
    default_config_dict,
    get_runs_dir,
    get_targets_dir,
    get_triage_dir,
)
from mlfuzz.targets import TargetKind


def init(ctx: typer.Context) -> None:
    """Create the data and seeds directory layout.

    Writes a default config.yaml into the data directory unless one exists.
    """
    state = get_state(ctx)
    data_dir = state.data_dir.resolve()
    seeds_dir = state.seeds_dir.resolve()

    config_path = data_dir / CONFIG_FILENAME
    keep_config = config_path.exists()
    try:
        for path in (
            get_runs_dir(data_dir),
            get_triage_dir(data_dir),
            get_targets_dir(data_dir),
            seeds_dir,
        ):
            path.mkdir(parents=True, exist_ok=True)
        for target in TargetKind:
            (seeds_dir / target.value).mkdir(exist_ok=True)
        if not keep_config:
            with config_path.open("w") as f:
                yaml.safe_dump(default_config_dict(), f, default_flow_style=False)
    except OSError as e:
        console.print(
            f"[red]Error:[/red] Cannot initialize {escape(str(data_dir))}: "
            f"{escape(str(e))}"
        )
        raise typer.Exit(EXIT_FAILURE) from e

    if keep_config:
        console.print(f"[yellow]Keeping existing config:[/yellow] {config_path}")

    console.print(f"[green]Initialized mlfuzz data directory:[/green] {data_dir}")
    console.print(f"  [dim]config:[/dim] {config_path}")
    console.print(f"  [dim]runs:[/dim] {get_runs_dir(data_dir)}")
    console.print(f"  [dim]triage:[/dim] {get_triage_dir(data_dir)}")
    console.print(f"  [dim]seeds:[/dim] {seeds_dir}")
