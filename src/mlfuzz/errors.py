# Copyright (c) Syntropy Systems
"""Exception hierarchy for mlfuzz.

Per-job outcomes (success, failed, timeout) are results, not exceptions.
Only configuration problems and infrastructure failures raise.
"""
from __future__ import annotations

from pathlib import Path


class MlfuzzError(Exception):
    """Base class for all mlfuzz errors."""


class ConfigError(MlfuzzError):
    """Invalid directories, counts or options. Raised before any job runs."""


class InfrastructureError(MlfuzzError):
    """A failure of the orchestrator itself. Aborts the run or session."""


class HarnessSpawnError(InfrastructureError):
    """The harness subprocess could not be started."""

    def __init__(self, argv: list[str], cause: OSError) -> None:
        self.argv = argv
        self.cause = cause
        super().__init__(f"Failed to spawn harness {argv[0]!r}: {cause}")


class ArtifactWriteError(InfrastructureError):
    """A log, status or summary file could not be written."""

    def __init__(self, path: Path, cause: OSError) -> None:
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to write {path}: {cause}")


class WorkerCrashedError(InfrastructureError):
    """A scheduler worker thread died with an unexpected exception."""

    def __init__(self, worker_name: str, cause: BaseException) -> None:
        self.worker_name = worker_name
        self.cause = cause
        super().__init__(
            f"Worker {worker_name} terminated abnormally: "
            f"{type(cause).__name__}: {cause}"
        )


class PrecheckError(MlfuzzError):
    """Malformed input found by a format validator.

    This is a finding, not a crash: the harness catches it and reports the
    message as a single line.
    """
