# Copyright (c) Syntropy Systems
"""Configuration management for mlfuzz."""
from __future__ import annotations

import os
import shutil
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Mapping, Optional, cast

import yaml

from mlfuzz.errors import ConfigError
from mlfuzz.targets import TargetKind

CONFIG_FILENAME = "config.yaml"
PROBE_ENV_PREFIX = "MLFUZZ_PROBE_"
DIRECT_PYTHON_ENV = "MLFUZZ_DIRECT_PYTHON"
PROBE_TIMEOUT_ENV = "MLFUZZ_PROBE_TIMEOUT"


def probe_env_var(target: TargetKind) -> str:
    """Environment variable holding the external probe command for a target."""
    return f"{PROBE_ENV_PREFIX}{target.value.upper()}"


@dataclass
class FuzzConfig:
    """Configuration for runs and triage sessions."""

    # Concurrent harness workers in a bulk run
    workers: int = 4

    # Wall-clock limit for one harness invocation (seconds)
    timeout_sec: int = 10

    # Extra attempts for a job that did not succeed
    restart_limit: int = 1

    # Attempts in a triage session
    repro_retries: int = 3

    # Cap on discovered corpus files (None = all)
    max_jobs: Optional[int] = None

    # Wall-clock limit for each optional probe inside the harness (seconds)
    probe_timeout_sec: int = 5

    # Interpreter used for the reference-implementation probe
    direct_python: str = sys.executable

    # External probe command line per target, input path is appended
    probes: dict[TargetKind, str] = field(default_factory=dict)

    def validate(self) -> None:
        """Reject values that would make a run meaningless."""
        if self.workers < 1:
            msg = f"workers must be at least 1 (got {self.workers})"
            raise ConfigError(msg)
        if self.timeout_sec < 1:
            msg = f"timeout must be at least 1 second (got {self.timeout_sec})"
            raise ConfigError(msg)
        if self.restart_limit < 0:
            msg = f"restart limit must not be negative (got {self.restart_limit})"
            raise ConfigError(msg)
        if self.repro_retries < 1:
            msg = f"repro retries must be at least 1 (got {self.repro_retries})"
            raise ConfigError(msg)
        if self.max_jobs is not None and self.max_jobs < 1:
            msg = f"max jobs must be at least 1 (got {self.max_jobs})"
            raise ConfigError(msg)
        if self.probe_timeout_sec < 1:
            msg = f"probe timeout must be at least 1 second (got {self.probe_timeout_sec})"
            raise ConfigError(msg)

    def with_overrides(self, **overrides: Any) -> FuzzConfig:
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def harness_env(self) -> dict[str, str]:
        """Environment handed to harness children so they see the same probes."""
        env = {
            DIRECT_PYTHON_ENV: self.direct_python,
            PROBE_TIMEOUT_ENV: str(self.probe_timeout_sec),
        }
        for target, command in self.probes.items():
            env[probe_env_var(target)] = command
        return env


def _int_or_none(data: Mapping[str, object], key: str) -> Optional[int]:
    value = data.get(key)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


def load_config(
    data_dir: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> FuzzConfig:
    """Load configuration from defaults, config.yaml and the environment.

    Looks for ``config.yaml`` directly under ``data_dir``. Keys with the wrong
    type are ignored. Probe commands from the environment win over the file.
    """
    config = FuzzConfig()
    if environ is None:
        environ = os.environ

    config_path = data_dir / CONFIG_FILENAME if data_dir is not None else None
    if config_path is not None and config_path.exists():
        try:
            with config_path.open() as f:
                loaded = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            msg = f"Cannot read {config_path}: {e}"
            raise ConfigError(msg) from e
        if not isinstance(loaded, dict):
            msg = f"{config_path} must contain a mapping"
            raise ConfigError(msg)
        data = cast("dict[str, object]", loaded)

        for key in ("workers", "timeout_sec", "restart_limit", "repro_retries",
                    "max_jobs", "probe_timeout_sec"):
            value = _int_or_none(data, key)
            if value is not None:
                setattr(config, key, value)
        direct_python = data.get("direct_python")
        if isinstance(direct_python, str) and direct_python:
            config.direct_python = direct_python
        probes = data.get("probes")
        if isinstance(probes, dict):
            for name, command in cast("dict[str, object]", probes).items():
                try:
                    target = TargetKind(str(name).lower())
                except ValueError:
                    continue
                if isinstance(command, str) and command.strip():
                    config.probes[target] = command

    direct_python = environ.get(DIRECT_PYTHON_ENV)
    if direct_python:
        config.direct_python = direct_python
    probe_timeout = environ.get(PROBE_TIMEOUT_ENV)
    if probe_timeout and probe_timeout.isdigit():
        config.probe_timeout_sec = int(probe_timeout)
    for target in TargetKind:
        command = environ.get(probe_env_var(target))
        if command and command.strip():
            config.probes[target] = command

    return config


def default_config_dict() -> dict[str, object]:
    """Default values written by ``mlfuzz init``."""
    defaults = FuzzConfig()
    return {
        "workers": defaults.workers,
        "timeout_sec": defaults.timeout_sec,
        "restart_limit": defaults.restart_limit,
        "repro_retries": defaults.repro_retries,
        "probe_timeout_sec": defaults.probe_timeout_sec,
        "probes": {target.value: "" for target in TargetKind},
    }


def detect_timeout_command() -> Optional[str]:
    """Locate the external ``timeout`` tool, if the host has one."""
    return shutil.which("timeout")


def get_runs_dir(data_dir: Path) -> Path:
    """Get the directory holding bulk run results."""
    return data_dir / "runs"


def get_triage_dir(data_dir: Path) -> Path:
    """Get the directory holding triage sessions."""
    return data_dir / "triage"


def get_targets_dir(data_dir: Path) -> Path:
    """Get the directory holding pinned reference library assets."""
    return data_dir / "targets"


def require_corpus_dir(corpus_dir: Path) -> Path:
    """Get the corpus directory or raise if it is unusable."""
    if not corpus_dir.exists():
        msg = f"Corpus directory not found: {corpus_dir}"
        raise ConfigError(msg)
    if not corpus_dir.is_dir():
        msg = f"Corpus path is not a directory: {corpus_dir}"
        raise ConfigError(msg)
    return corpus_dir
