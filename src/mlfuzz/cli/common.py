# Copyright (c) Syntropy Systems
"""Shared CLI state, exit codes and logging setup."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

console = Console()
err_console = Console(stderr=True)

# Process exit codes, one per failure family
EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_CONFIG = 2
EXIT_RUN_INFRA = 3
EXIT_TRIAGE_INFRA = 4


@dataclass
class CliState:
    """Global options shared by every command."""

    data_dir: Path
    seeds_dir: Path


def get_state(ctx: typer.Context) -> CliState:
    """Fetch the global options stored by the app callback."""
    state = ctx.find_root().obj
    if not isinstance(state, CliState):
        state = CliState(data_dir=Path("./data"), seeds_dir=Path("./seeds"))
        ctx.find_root().obj = state
    return state


def setup_logging(verbose: bool = False, debug: bool = False) -> None:
    """Route library logging through rich on stderr."""
    level = logging.WARNING
    if verbose:
        level = logging.INFO
    if debug:
        level = logging.DEBUG
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
