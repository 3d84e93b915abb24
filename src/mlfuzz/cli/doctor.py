# Copyright (c) Syntropy Systems
"""mlfuzz doctor command."""

import shutil

import typer
from rich.markup import escape

from mlfuzz.artifacts import list_runs, list_triages, read_target_meta
from mlfuzz.cli.common import console, get_state
from mlfuzz.config import CONFIG_FILENAME, detect_timeout_command, load_config
from mlfuzz.errors import ConfigError
from mlfuzz.probes import reference_available
from mlfuzz.targets import TargetKind


def doctor(ctx: typer.Context) -> None:
    """Check mlfuzz setup and diagnose issues.

    Verifies:
    - data directory and config.yaml
    - timeout enforcement
    - reference libraries and external probes
    - pinned target assets
    """
    state = get_state(ctx)
    issues: list[str] = []
    warnings: list[str] = []

    data_dir = state.data_dir
    if data_dir.is_dir():
        console.print(f"[green]✓[/green] Data directory: {data_dir}")
        console.print(
            f"[dim]•[/dim] {len(list_runs(data_dir))} runs, "
            f"{len(list_triages(data_dir))} triage sessions"
        )
    else:
        console.print(f"[yellow]⚠[/yellow] Data directory not found: {data_dir}")
        console.print("  Run [bold]mlfuzz init[/bold] to create it")
        warnings.append("Data directory missing")

    config = None
    try:
        config = load_config(data_dir)
        config.validate()
        source = data_dir / CONFIG_FILENAME
        origin = str(source) if source.exists() else "defaults"
        console.print(f"[green]✓[/green] Config: {origin}")
    except ConfigError as e:
        console.print(f"[red]✗[/red] Config: {escape(str(e))}")
        issues.append("Invalid config")

    timeout_command = detect_timeout_command()
    if timeout_command:
        console.print(f"[green]✓[/green] Timeout enforcement: {timeout_command}")
    else:
        console.print(
            "[yellow]⚠[/yellow] 'timeout' not found, harness timeouts use "
            "the built-in watchdog"
        )
        warnings.append("External timeout tool missing")

    if config is not None:
        python = shutil.which(config.direct_python)
        if python is None:
            console.print(
                f"[yellow]⚠[/yellow] Reference python not found: "
                f"{escape(config.direct_python)}"
            )
            warnings.append("Reference python missing")
        for target in TargetKind:
            if python is not None:
                if reference_available(target, python):
                    console.print(
                        f"[green]✓[/green] {target.value}: "
                        f"{target.reference_module} importable"
                    )
                else:
                    console.print(
                        f"[dim]•[/dim] {target.value}: "
                        f"{target.reference_module} not installed"
                    )
            command = config.probes.get(target)
            if command:
                console.print(f"[dim]•[/dim] {target.value} probe: {escape(command)}")
            meta = read_target_meta(data_dir, target)
            if meta is not None:
                console.print(
                    f"[green]✓[/green] {target.value} pinned: {escape(meta.version)} "
                    f"sha256={meta.downloaded_sha256[:12]}"
                )

    console.print()
    if issues:
        console.print(f"[red]Found {len(issues)} issue(s)[/red]")
        for issue in issues:
            console.print(f"  - {issue}")
        raise typer.Exit(1)
    if warnings:
        console.print(f"[yellow]Found {len(warnings)} warning(s)[/yellow]")
        for warning in warnings:
            console.print(f"  - {warning}")
    else:
        console.print("[green]All checks passed[/green]")

