# Copyright (c) Syntropy Systems
"""Main CLI entry point for mlfuzz."""

from pathlib import Path

import typer

from mlfuzz.cli.common import CliState, setup_logging
from mlfuzz.cli.doctor import doctor
from mlfuzz.cli.harness_cmd import harness
from mlfuzz.cli.init_cmd import init
from mlfuzz.cli.report import report
from mlfuzz.cli.results import export, list_results, show
from mlfuzz.cli.run import run
from mlfuzz.cli.triage import triage

app = typer.Typer(
    name="mlfuzz",
    help=(
        "Fuzzing orchestration for ML model formats. Run a corpus through "
        "isolated GGUF, ONNX and safetensors harnesses, then triage crashes."
    ),
    no_args_is_help=True,
    add_completion=False,
)


@app.callback()
def main(
    ctx: typer.Context,
    data_dir: Path = typer.Option(
        Path("./data"),
        "--data-dir",
        envvar="MLFUZZ_DATA_DIR",
        help="Data directory for runs, triage sessions and config",
    ),
    seeds_dir: Path = typer.Option(
        Path("./seeds"),
        "--seeds-dir",
        envvar="MLFUZZ_SEEDS_DIR",
        help="Seeds directory used as the default corpus",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log progress"),
    debug: bool = typer.Option(False, "--debug", help="Log everything"),
) -> None:
    """Fuzzing orchestration for GGUF, ONNX and safetensors."""
    setup_logging(verbose=verbose, debug=debug)
    ctx.obj = CliState(data_dir=data_dir, seeds_dir=seeds_dir)


# Register commands
_ = app.command()(init)
_ = app.command()(run)
_ = app.command()(triage)
_ = app.command()(report)
_ = app.command(name="list")(list_results)
_ = app.command()(show)
_ = app.command(name="export")(export)
_ = app.command()(doctor)
_ = app.command(hidden=True)(harness)


if __name__ == "__main__":
    app()
