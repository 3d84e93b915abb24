# Copyright (c) Syntropy Systems
"""Allow ``python -m mlfuzz``; this is how harness children are spawned."""

from mlfuzz.cli.main import app

if __name__ == "__main__":
    app(prog_name="mlfuzz")
