# Copyright (c) Syntropy Systems
"""Harness process runner with timeout enforcement and orphan prevention."""
from __future__ import annotations

import contextlib
import ctypes
import logging
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Optional

from typing_extensions import Self

from mlfuzz.errors import HarnessSpawnError

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence
    from pathlib import Path

    from mlfuzz.targets import TargetKind

logger = logging.getLogger(__name__)

# Exit status GNU timeout uses when it had to stop the command
TIMEOUT_EXIT_CODE = 124

# Seconds between SIGTERM and SIGKILL for the external timeout tool
KILL_AFTER_SEC = 2

# Math libraries that spin up thread pools on import
THREAD_POOL_ENV = {
    "OMP_NUM_THREADS": "1",
    "OPENBLAS_NUM_THREADS": "1",
    "MKL_NUM_THREADS": "1",
    "VECLIB_MAXIMUM_THREADS": "1",
    "NUMEXPR_NUM_THREADS": "1",
}


class ResultKind(str, Enum):
    """Outcome of one harness invocation."""

    SUCCESS = "success"
    FAILED = "failed"
    TIMEOUT = "timeout"


@dataclass(frozen=True)
class HarnessExecResult:
    """A harness outcome with a short, stable summary of what it printed."""

    kind: ResultKind
    summary: str

    @classmethod
    def success(cls, summary: str) -> Self:
        return cls(ResultKind.SUCCESS, summary)

    @classmethod
    def failed(cls, summary: str) -> Self:
        return cls(ResultKind.FAILED, summary)

    @classmethod
    def timeout(cls, summary: str) -> Self:
        return cls(ResultKind.TIMEOUT, summary)

    @property
    def ok(self) -> bool:
        return self.kind is ResultKind.SUCCESS


@dataclass(frozen=True)
class HarnessOutcome:
    """Everything one harness invocation produced."""

    result: HarnessExecResult
    stdout: str
    stderr: str
    exit_code: Optional[int]
    duration: float

    @property
    def output(self) -> str:
        """Combined stdout and stderr, stdout first."""
        if self.stdout and self.stderr:
            return f"{self.stdout.rstrip()}\n{self.stderr}"
        return self.stdout or self.stderr


def _first_line(text: str) -> str:
    for line in text.splitlines():
        if line.strip():
            return line.strip()
    return ""


def summarize(stdout: str, stderr: str) -> str:
    """First line of stdout and first line of stderr, joined."""
    parts = [p for p in (_first_line(stdout), _first_line(stderr)) if p]
    return " | ".join(parts) if parts else "(no output)"


def harness_launcher() -> list[str]:
    """argv prefix that re-invokes this installation in harness mode."""
    return [sys.executable, "-m", "mlfuzz", "harness"]


def setup_pdeathsig() -> None:
    """Set PDEATHSIG so the harness child dies when the orchestrator dies.

    Only works on Linux.
    """
    if sys.platform != "linux":
        return
    try:
        libc = ctypes.CDLL("libc.so.6", use_errno=True)
        pr_set_pdeathsig = 1
        libc.prctl(pr_set_pdeathsig, signal.SIGKILL)
    except (AttributeError, OSError):
        # Can't set PDEATHSIG, continue without it
        return


def _kill_group(process: subprocess.Popen[bytes]) -> None:
    """SIGKILL the child's whole process group."""
    try:
        pgid = os.getpgid(process.pid)
    except (OSError, ProcessLookupError):
        return
    with contextlib.suppress(OSError, ProcessLookupError):
        os.killpg(pgid, signal.SIGKILL)


class HarnessExecutor:
    """Runs one (target, input) pair in an isolated harness subprocess.

    Features:
    - Wraps the child in the external ``timeout`` tool when the host has one
    - Falls back to a watchdog that kills the child's process group otherwise
    - Pins math-library thread pools to one thread in the child
    - Uses start_new_session=True and PDEATHSIG to prevent orphans

    Safe to share between worker threads: ``execute`` touches no shared state.
    """

    timeout_sec: int
    timeout_command: Optional[str]
    launcher: list[str]
    env: dict[str, str]

    def __init__(
        self,
        timeout_sec: int,
        timeout_command: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        launcher: Optional[Sequence[str]] = None,
    ) -> None:
        """Initialize a harness executor.

        Args:
            timeout_sec: Wall-clock limit per invocation
            timeout_command: Path to the external timeout tool, None if absent
            env: Additional environment variables for the child
            launcher: argv prefix for harness mode (default: this mlfuzz)

        """
        self.timeout_sec = timeout_sec
        self.timeout_command = timeout_command
        self.launcher = list(launcher) if launcher is not None else harness_launcher()

        self.env = os.environ.copy()
        if env:
            self.env.update(env)
        self.env.update(THREAD_POOL_ENV)
        self.env["PYTHONFAULTHANDLER"] = "1"

    @property
    def uses_timeout_command(self) -> bool:
        return self.timeout_command is not None

    def build_argv(self, target: TargetKind, input_path: Path) -> list[str]:
        """Full command line for one invocation, timeout wrapper included."""
        argv = [*self.launcher, "--target", target.value, "--input", str(input_path)]
        if self.timeout_command is not None:
            argv = [
                self.timeout_command,
                f"--kill-after={KILL_AFTER_SEC}",
                str(self.timeout_sec),
                *argv,
            ]
        return argv

    def execute(self, target: TargetKind, input_path: Path) -> HarnessOutcome:
        """Run the harness to completion or timeout.

        Raises ``HarnessSpawnError`` if the child cannot be started. A failing
        or hanging child is a normal outcome, not an exception.
        """
        argv = self.build_argv(target, input_path)
        logger.debug("Spawning harness: %s", argv)

        # The external tool enforces the real deadline, the watchdog is a backstop.
        deadline = float(self.timeout_sec)
        if self.timeout_command is not None:
            deadline += KILL_AFTER_SEC + 5

        started = time.monotonic()
        try:
            process = subprocess.Popen(  # noqa: S603
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=self.env,
                start_new_session=True,  # Creates new process group
                preexec_fn=setup_pdeathsig if sys.platform == "linux" else None,  # noqa: PLW1509
            )
        except OSError as e:
            raise HarnessSpawnError(argv, e) from e

        watchdog_fired = False
        try:
            raw_out, raw_err = process.communicate(timeout=deadline)
        except subprocess.TimeoutExpired:
            watchdog_fired = True
            _kill_group(process)
            raw_out, raw_err = process.communicate()
        duration = time.monotonic() - started

        stdout = raw_out.decode("utf-8", errors="replace")
        stderr = raw_err.decode("utf-8", errors="replace")
        exit_code = process.returncode
        summary = summarize(stdout, stderr)

        if watchdog_fired or (
            self.timeout_command is not None and exit_code == TIMEOUT_EXIT_CODE
        ):
            result = HarnessExecResult.timeout(summary)
        elif exit_code == 0:
            result = HarnessExecResult.success(summary)
        else:
            result = HarnessExecResult.failed(summary)

        logger.debug(
            "Harness %s on %s: %s (exit %s, %.2fs)",
            target.value, input_path, result.kind.value, exit_code, duration,
        )
        return HarnessOutcome(
            result=result,
            stdout=stdout,
            stderr=stderr,
            exit_code=exit_code,
            duration=duration,
        )
