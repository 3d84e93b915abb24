# Copyright (c) Syntropy Systems
"""On-disk layout for run and triage results.

    <data_dir>/runs/run-<ts>/logs/job-<00000>-attempt-<n>.log
    <data_dir>/runs/run-<ts>/status.json
    <data_dir>/triage/triage-<ts>/attempt-<n>.log
    <data_dir>/triage/triage-<ts>/summary.json

Every log path embeds its job id and attempt number, so concurrent workers
never write to the same file.
"""
from __future__ import annotations

import time
from pathlib import Path
from typing import TYPE_CHECKING, Optional

from pydantic import ValidationError
from typing_extensions import Self

from mlfuzz.config import get_runs_dir, get_targets_dir, get_triage_dir
from mlfuzz.errors import ArtifactWriteError
from mlfuzz.models import RunStatus, TargetMeta, TriageSummary

if TYPE_CHECKING:
    from collections.abc import Sequence

    from mlfuzz.runner import HarnessExecResult, HarnessOutcome
    from mlfuzz.targets import TargetKind

STATUS_FILENAME = "status.json"
SUMMARY_FILENAME = "summary.json"
META_FILENAME = "meta.json"


def _write_text(path: Path, content: str) -> None:
    try:
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        raise ArtifactWriteError(path, e) from e


def _create_unique_dir(parent: Path, prefix: str, now: Optional[int]) -> Path:
    """Create ``<parent>/<prefix>-<ts>``, bumping ts until the name is free."""
    stamp = int(time.time()) if now is None else now
    try:
        parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise ArtifactWriteError(parent, e) from e
    while True:
        path = parent / f"{prefix}-{stamp}"
        try:
            path.mkdir()
        except FileExistsError:
            stamp += 1
            continue
        except OSError as e:
            raise ArtifactWriteError(path, e) from e
        return path


class RunArtifacts:
    """Files belonging to one bulk run."""

    def __init__(self, run_dir: Path) -> None:
        self.run_dir = run_dir
        self.logs_dir = run_dir / "logs"

    @property
    def run_id(self) -> str:
        return self.run_dir.name

    @property
    def status_path(self) -> Path:
        return self.run_dir / STATUS_FILENAME

    @classmethod
    def create(cls, data_dir: Path, now: Optional[int] = None) -> Self:
        """Allocate a fresh ``run-<ts>`` directory with its logs folder."""
        run_dir = _create_unique_dir(get_runs_dir(data_dir), "run", now)
        artifacts = cls(run_dir)
        try:
            artifacts.logs_dir.mkdir()
        except OSError as e:
            raise ArtifactWriteError(artifacts.logs_dir, e) from e
        return artifacts

    def attempt_log_path(self, job_id: int, attempt: int) -> Path:
        return self.logs_dir / f"job-{job_id:05d}-attempt-{attempt}.log"

    def write_attempt_log(
        self,
        job_id: int,
        input_path: Path,
        attempt: int,
        result: HarnessExecResult,
    ) -> Path:
        path = self.attempt_log_path(job_id, attempt)
        _write_text(
            path,
            f"job_id: {job_id}\n"
            f"input: {input_path}\n"
            f"attempt: {attempt}\n"
            f"result: {result.kind.value}\n"
            f"summary: {result.summary}\n",
        )
        return path

    def write_status(self, status: RunStatus) -> Path:
        _write_text(self.status_path, status.model_dump_json(indent=2) + "\n")
        return self.status_path


class TriageArtifacts:
    """Files belonging to one triage session."""

    def __init__(self, triage_dir: Path) -> None:
        self.triage_dir = triage_dir

    @property
    def triage_id(self) -> str:
        return self.triage_dir.name

    @property
    def summary_path(self) -> Path:
        return self.triage_dir / SUMMARY_FILENAME

    @classmethod
    def create(cls, data_dir: Path, now: Optional[int] = None) -> Self:
        """Allocate a fresh ``triage-<ts>`` directory."""
        return cls(_create_unique_dir(get_triage_dir(data_dir), "triage", now))

    def attempt_log_path(self, attempt: int) -> Path:
        return self.triage_dir / f"attempt-{attempt}.log"

    def write_attempt_log(
        self,
        attempt: int,
        input_path: Path,
        outcome: HarnessOutcome,
        signature: Sequence[str],
    ) -> Path:
        path = self.attempt_log_path(attempt)
        lines = [
            f"attempt: {attempt}",
            f"input: {input_path}",
            f"result: {outcome.result.kind.value}",
            f"exit_code: {outcome.exit_code}",
            f"duration_sec: {outcome.duration:.3f}",
            f"summary: {outcome.result.summary}",
            "signature:",
            *(f"  - {line}" for line in signature),
            "--- stdout ---",
            outcome.stdout.rstrip("\n"),
            "--- stderr ---",
            outcome.stderr.rstrip("\n"),
        ]
        _write_text(path, "\n".join(lines) + "\n")
        return path

    def write_summary(self, summary: TriageSummary) -> Path:
        _write_text(self.summary_path, summary.model_dump_json(indent=2) + "\n")
        return self.summary_path


def _sorted_dirs(parent: Path, prefix: str) -> list[Path]:
    if not parent.is_dir():
        return []

    def stamp(path: Path) -> int:
        suffix = path.name[len(prefix) + 1:]
        return int(suffix) if suffix.isdigit() else -1

    dirs = [p for p in parent.iterdir() if p.is_dir() and p.name.startswith(f"{prefix}-")]
    return sorted(dirs, key=stamp, reverse=True)


def read_run_status(run_dir: Path) -> Optional[RunStatus]:
    """Read status.json from a run directory, None if absent or invalid."""
    path = run_dir / STATUS_FILENAME
    if not path.exists():
        return None
    try:
        return RunStatus.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError):
        return None


def read_triage_summary(triage_dir: Path) -> Optional[TriageSummary]:
    """Read summary.json from a triage directory, None if absent or invalid."""
    path = triage_dir / SUMMARY_FILENAME
    if not path.exists():
        return None
    try:
        return TriageSummary.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError):
        return None


def list_runs(data_dir: Path) -> list[Path]:
    """Run directories, newest first."""
    return _sorted_dirs(get_runs_dir(data_dir), "run")


def list_triages(data_dir: Path) -> list[Path]:
    """Triage directories, newest first."""
    return _sorted_dirs(get_triage_dir(data_dir), "triage")


def find_result_dir(data_dir: Path, result_id: str) -> Optional[Path]:
    """Resolve ``run-<ts>`` or ``triage-<ts>`` to its directory."""
    for candidate in (get_runs_dir(data_dir) / result_id, get_triage_dir(data_dir) / result_id):
        if candidate.is_dir():
            return candidate
    return None


def read_target_meta(data_dir: Path, target: TargetKind) -> Optional[TargetMeta]:
    """Read the pinned reference library record for a target, if prepared."""
    path = get_targets_dir(data_dir) / target.value / META_FILENAME
    if not path.exists():
        return None
    try:
        return TargetMeta.model_validate_json(path.read_text(encoding="utf-8"))
    except (OSError, ValidationError):
        return None
