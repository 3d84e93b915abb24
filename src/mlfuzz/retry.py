# Copyright (c) Syntropy Systems
"""Bounded re-attempt loop around the harness executor."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from pathlib import Path

    from mlfuzz.artifacts import RunArtifacts
    from mlfuzz.runner import HarnessExecResult, HarnessOutcome
    from mlfuzz.scheduler import RunJob
    from mlfuzz.targets import TargetKind

logger = logging.getLogger(__name__)


class Executor(Protocol):
    def execute(self, target: TargetKind, input_path: Path) -> HarnessOutcome:
        ...


@dataclass(frozen=True)
class JobOutcome:
    """Final result of a job after retries."""

    job: RunJob
    result: HarnessExecResult
    attempts: int
    retries: int


class RetryPolicy:
    """Attempt a job up to ``restart_limit + 1`` times, stopping at the first success.

    Each attempt is logged to its own file before the next one starts. When
    every attempt fails, the last attempt's result is the job's result.
    """

    def __init__(
        self,
        executor: Executor,
        target: TargetKind,
        restart_limit: int,
        artifacts: RunArtifacts,
    ) -> None:
        self.executor = executor
        self.target = target
        self.restart_limit = restart_limit
        self.artifacts = artifacts

    @property
    def max_attempts(self) -> int:
        return self.restart_limit + 1

    def run(self, job: RunJob) -> JobOutcome:
        retries = 0
        attempt = 1
        while True:
            outcome = self.executor.execute(self.target, job.input)
            result = outcome.result
            _ = self.artifacts.write_attempt_log(job.id, job.input, attempt, result)
            logger.info(
                "job %05d attempt %d/%d: %s",
                job.id, attempt, self.max_attempts, result.kind.value,
            )
            if result.ok or attempt >= self.max_attempts:
                return JobOutcome(job=job, result=result, attempts=attempt, retries=retries)
            retries += 1
            attempt += 1
