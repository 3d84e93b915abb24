# Copyright (c) Syntropy Systems
"""Harness mode: exercise one input for one target, inside a child process.

The parent never parses untrusted bytes itself. It re-invokes mlfuzz in
harness mode, and this module does the work there, so a native crash in a
reference library only takes down the child.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from mlfuzz.errors import PrecheckError
from mlfuzz.precheck import precheck
from mlfuzz.probes import run_direct_probe, run_external_probe
from mlfuzz.structure import walk

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from mlfuzz.targets import TargetKind

logger = logging.getLogger(__name__)

REPORT_FIELDS = ("parser_step", "core_path_step", "direct_step", "external_step")


@dataclass(frozen=True)
class HarnessReport:
    """Four report lines plus the pass/fail bit that becomes the exit status."""

    parser_step: str
    core_path_step: str
    direct_step: str
    external_step: str
    passed: bool

    @property
    def exit_code(self) -> int:
        return 0 if self.passed else 1

    def lines(self) -> list[str]:
        return [f"{name}: {getattr(self, name)}" for name in REPORT_FIELDS]


def _step(
    check: Callable[[TargetKind, bytes], str], target: TargetKind, data: bytes
) -> tuple[bool, str]:
    try:
        return True, f"ok {check(target, data)}"
    except PrecheckError as e:
        return False, f"error {e}"


def run_harness(
    target: TargetKind,
    input_path: Path,
    *,
    probe_command: Optional[str] = None,
    direct_python: Optional[str] = None,
    probe_timeout: float = 5.0,
) -> HarnessReport:
    """Run precheck, structural walk and both probes against one file."""
    try:
        data = input_path.read_bytes()
    except OSError as e:
        reason = f"error cannot read input: {e.strerror or e}"
        return HarnessReport(
            parser_step=reason,
            core_path_step="skipped (input unreadable)",
            direct_step="skipped (input unreadable)",
            external_step="skipped (input unreadable)",
            passed=False,
        )

    parser_ok, parser_step = _step(precheck, target, data)
    if parser_ok:
        core_ok, core_path_step = _step(walk, target, data)
    else:
        core_ok, core_path_step = False, "skipped (precheck failed)"
    logger.debug("%s %s: parser=%s core=%s", target.value, input_path, parser_ok, core_ok)

    direct = run_direct_probe(target, input_path, direct_python, probe_timeout)
    external = run_external_probe(probe_command, input_path, probe_timeout)

    return HarnessReport(
        parser_step=parser_step,
        core_path_step=core_path_step,
        direct_step=direct.render(),
        external_step=external.render(),
        passed=parser_ok and core_ok,
    )
