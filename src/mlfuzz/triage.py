# Copyright (c) Syntropy Systems
"""Reproduce one suspicious input several times and classify the result.

Attempts run one after another, never concurrently.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

from mlfuzz.artifacts import TriageArtifacts
from mlfuzz.errors import ConfigError
from mlfuzz.models import TriageAttemptRecord, TriageSummary
from mlfuzz.runner import ResultKind

if TYPE_CHECKING:
    from collections.abc import Sequence
    from pathlib import Path

    from mlfuzz.config import FuzzConfig
    from mlfuzz.retry import Executor
    from mlfuzz.targets import TargetKind

logger = logging.getLogger(__name__)

SIGNATURE_SIZE = 3

# Lower-case substrings that mark a line as part of a crash report
CRASH_HINTS = (
    "stack",
    "frame",
    "backtrace",
    "traceback",
    "sanitizer",
    "addresssanitizer",
    "leaksanitizer",
    "runtime error:",
    "abort",
    "sigsegv",
    "sigabrt",
    "sigbus",
    "segmentation fault",
    "fatal python error",
    "panicked at",
    "core dumped",
    # loader failures
    "failed to load",
    "error loading",
    "gguf_init",
    "invalid magic",
    "checker error",
    "onnxruntime",
    "safetensorerror",
    "headertoolarge",
    "invalidheader",
)


class Verdict(str, Enum):
    REPRODUCED = "reproduced"
    FLAKY = "flaky"
    FLAKY_STACK_MISMATCH = "flaky_stack_mismatch"
    TIMEOUT = "timeout"
    FAILED = "failed"


@dataclass(frozen=True)
class TriageAttempt:
    """One reproduction attempt and its fingerprint."""

    attempt: int
    result: ResultKind
    signature_top3: tuple[str, ...]


def _is_crash_hint(line: str) -> bool:
    lowered = line.lower()
    return any(hint in lowered for hint in CRASH_HINTS)


def extract_signature(output: str) -> tuple[str, ...]:
    """Pick up to three lines that fingerprint an attempt.

    Prefers the first three lines that look like crash output. If fewer than
    three such lines exist, uses the first three non-empty lines instead.
    """
    lines = [line.strip() for line in output.splitlines() if line.strip()]
    hinted = [line for line in lines if _is_crash_hint(line)][:SIGNATURE_SIZE]
    if len(hinted) == SIGNATURE_SIZE:
        return tuple(hinted)
    return tuple(lines[:SIGNATURE_SIZE])


def signatures_consistent(attempts: Sequence[TriageAttempt]) -> bool:
    """True when every attempt's signature equals the first one's."""
    if not attempts:
        return True
    first = attempts[0].signature_top3
    return all(a.signature_top3 == first for a in attempts)


def classify(attempts: Sequence[TriageAttempt]) -> Verdict:
    """Reduce an attempt sequence to a verdict.

    Rules, first match wins:
    1. any attempt timed out -> timeout
    2. at least two attempts, all succeeded, identical signatures -> reproduced
    3. exactly one attempt succeeded -> flaky
    4. signatures differ -> flaky_stack_mismatch
    5. otherwise -> failed
    """
    results = [a.result for a in attempts]
    if ResultKind.TIMEOUT in results:
        return Verdict.TIMEOUT
    success_count = results.count(ResultKind.SUCCESS)
    consistent = signatures_consistent(attempts)
    if len(attempts) > 1 and success_count == len(attempts) and consistent:
        return Verdict.REPRODUCED
    if success_count == 1:
        return Verdict.FLAKY
    if not consistent:
        return Verdict.FLAKY_STACK_MISMATCH
    return Verdict.FAILED


class TriageSession:
    """Sequential reproduction loop for one input."""

    def __init__(
        self,
        executor: Executor,
        target: TargetKind,
        input_path: Path,
        repro_retries: int,
        timeout_sec: int,
        artifacts: TriageArtifacts,
        on_attempt: Optional[Callable[[TriageAttempt], None]] = None,
    ) -> None:
        self.executor = executor
        self.target = target
        self.input_path = input_path
        self.repro_retries = repro_retries
        self.timeout_sec = timeout_sec
        self.artifacts = artifacts
        self.on_attempt = on_attempt
        self.attempts: list[TriageAttempt] = []

    def run(self) -> TriageSummary:
        """Run every attempt (no early stop), then classify and persist."""
        for number in range(1, self.repro_retries + 1):
            outcome = self.executor.execute(self.target, self.input_path)
            signature = extract_signature(outcome.output)
            attempt = TriageAttempt(number, outcome.result.kind, signature)
            _ = self.artifacts.write_attempt_log(number, self.input_path, outcome, signature)
            self.attempts.append(attempt)
            logger.info("triage attempt %d/%d: %s", number, self.repro_retries, attempt.result.value)
            if self.on_attempt is not None:
                self.on_attempt(attempt)

        summary = self.summarize()
        _ = self.artifacts.write_summary(summary)
        return summary

    def summarize(self) -> TriageSummary:
        results = [a.result for a in self.attempts]
        return TriageSummary(
            triage_id=self.artifacts.triage_id,
            target=self.target.value,
            input=str(self.input_path),
            repro_retries=self.repro_retries,
            timeout_sec=self.timeout_sec,
            success_count=results.count(ResultKind.SUCCESS),
            failed_count=results.count(ResultKind.FAILED),
            timeout_count=results.count(ResultKind.TIMEOUT),
            signature_consistent=signatures_consistent(self.attempts),
            verdict=classify(self.attempts).value,
            attempts=[
                TriageAttemptRecord(
                    attempt=a.attempt,
                    result=a.result.value,
                    signature_top3=list(a.signature_top3),
                )
                for a in self.attempts
            ],
        )


def execute_triage(
    executor: Executor,
    config: FuzzConfig,
    target: TargetKind,
    input_path: Path,
    data_dir: Path,
    on_attempt: Optional[Callable[[TriageAttempt], None]] = None,
) -> TriageSummary:
    """Validate the input, allocate a triage directory and run the session."""
    config.validate()
    if not input_path.is_file():
        msg = f"Input file not found: {input_path}"
        raise ConfigError(msg)
    artifacts = TriageArtifacts.create(data_dir)
    session = TriageSession(
        executor,
        target,
        input_path,
        config.repro_retries,
        config.timeout_sec,
        artifacts,
        on_attempt=on_attempt,
    )
    return session.run()
