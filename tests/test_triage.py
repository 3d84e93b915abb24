# Copyright (c) Syntropy Systems
"""Tests for triage signatures, verdicts and sessions."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from conftest import ScriptedExecutor, make_outcome
from mlfuzz.config import FuzzConfig
from mlfuzz.errors import ConfigError
from mlfuzz.runner import ResultKind
from mlfuzz.targets import TargetKind
from mlfuzz.triage import (
    TriageAttempt,
    Verdict,
    classify,
    execute_triage,
    extract_signature,
    signatures_consistent,
)

S = ResultKind.SUCCESS
F = ResultKind.FAILED
T = ResultKind.TIMEOUT


def _attempts(*pairs: tuple[ResultKind, tuple[str, ...]]) -> list[TriageAttempt]:
    return [TriageAttempt(i + 1, kind, sig) for i, (kind, sig) in enumerate(pairs)]


class TestExtractSignature:
    """Tests for attempt fingerprints."""

    def test_prefers_crash_lines(self) -> None:
        output = (
            "parser_step: ok\n"
            "Fatal Python error: Segmentation fault\n"
            "noise\n"
            "Current thread 0x01 (most recent call first):\n"
            "  File \"loader.py\", line 3 in load\n"
            "Stack (most recent call first):\n"
            "  frame #1 in gguf_init\n"
        )
        assert extract_signature(output) == (
            "Fatal Python error: Segmentation fault",
            "Stack (most recent call first):",
            "frame #1 in gguf_init",
        )

    def test_falls_back_to_first_lines(self) -> None:
        output = "\nparser_step: error bad GGUF magic\n\ncore_path_step: skipped\nd\ne\n"
        assert extract_signature(output) == (
            "parser_step: error bad GGUF magic",
            "core_path_step: skipped",
            "d",
        )

    def test_too_few_hints_uses_first_lines(self) -> None:
        output = "one\nTraceback (most recent call last):\ntwo\nthree\n"
        assert extract_signature(output) == ("one", "Traceback (most recent call last):", "two")

    def test_short_output(self) -> None:
        assert extract_signature("only\n") == ("only",)
        assert extract_signature("") == ()

    def test_hint_match_ignores_case(self) -> None:
        output = "BACKTRACE:\nSIGSEGV received\nABORT called\n"
        assert extract_signature("x\n" + output) == (
            "BACKTRACE:", "SIGSEGV received", "ABORT called",
        )


class TestSignaturesConsistent:
    def test_empty(self) -> None:
        assert signatures_consistent([])

    def test_equal(self) -> None:
        assert signatures_consistent(_attempts((F, ("a",)), (F, ("a",))))

    def test_different(self) -> None:
        assert not signatures_consistent(_attempts((F, ("a",)), (F, ("b",))))


class TestClassify:
    """Tests for verdict rules."""

    @pytest.mark.parametrize(
        ("results", "expected"),
        [
            ([S, S, S], Verdict.REPRODUCED),
            ([S], Verdict.FLAKY),
            ([F, F, F], Verdict.FAILED),
            ([F], Verdict.FAILED),
            ([S, T, S], Verdict.TIMEOUT),
            ([T], Verdict.TIMEOUT),
            ([F, S, F], Verdict.FLAKY),
        ],
    )
    def test_same_signature(self, results: list[ResultKind], expected: Verdict) -> None:
        attempts = _attempts(*[(kind, ("sig",)) for kind in results])
        assert classify(attempts) == expected

    def test_all_success_mixed_signatures(self) -> None:
        attempts = _attempts((S, ("a",)), (S, ("b",)))
        assert classify(attempts) == Verdict.FLAKY_STACK_MISMATCH

    def test_failures_mixed_signatures(self) -> None:
        attempts = _attempts((F, ("a",)), (F, ("b",)), (F, ("a",)))
        assert classify(attempts) == Verdict.FLAKY_STACK_MISMATCH

    def test_two_successes_one_failure(self) -> None:
        attempts = _attempts((S, ("x",)), (S, ("x",)), (F, ("x",)))
        assert classify(attempts) == Verdict.FAILED

    @pytest.mark.parametrize(
        ("pairs", "expected"),
        [
            ([(S, ("a",)), (F, ("b",)), (S, ("a",))], Verdict.FLAKY_STACK_MISMATCH),
            ([(T, ("a",)), (S, ("b",)), (S, ("b",))], Verdict.TIMEOUT),
        ],
    )
    def test_mixed_results_and_signatures(
        self, pairs: list[tuple[ResultKind, tuple[str, ...]]], expected: Verdict
    ) -> None:
        assert classify(_attempts(*pairs)) == expected

    def test_timeout_wins_over_mismatch(self) -> None:
        attempts = _attempts((F, ("a",)), (T, ("b",)))
        assert classify(attempts) == Verdict.TIMEOUT


class TestExecuteTriage:
    """Tests for a full triage session."""

    def test_session_writes_summary_and_logs(self, temp_dir: Path, data_dir: Path) -> None:
        input_path = temp_dir / "crash.gguf"
        _ = input_path.write_bytes(b"GGML")
        crash = make_outcome(
            ResultKind.FAILED,
            "parser_step: error bad GGUF magic\ncore_path_step: skipped (precheck failed)\n",
            "Traceback (most recent call last):\n",
        )
        executor = ScriptedExecutor({"crash.gguf": [crash] * 3})
        seen: list[int] = []

        summary = execute_triage(
            executor,
            FuzzConfig(repro_retries=3, timeout_sec=4),
            TargetKind.GGUF,
            input_path,
            data_dir,
            on_attempt=lambda attempt: seen.append(attempt.attempt),
        )

        assert seen == [1, 2, 3]
        assert summary.verdict == "failed"
        assert summary.failed_count == 3
        assert summary.signature_consistent

        triage_dir = data_dir / "triage" / summary.triage_id
        on_disk = json.loads((triage_dir / "summary.json").read_text())
        assert list(on_disk) == [
            "triage_id",
            "target",
            "input",
            "repro_retries",
            "timeout_sec",
            "success_count",
            "failed_count",
            "timeout_count",
            "signature_consistent",
            "verdict",
            "attempts",
        ]
        assert on_disk["timeout_sec"] == 4
        assert on_disk["input"] == str(input_path)
        assert on_disk["attempts"][0] == {
            "attempt": 1,
            "result": "failed",
            "signature_top3": [
                "parser_step: error bad GGUF magic",
                "core_path_step: skipped (precheck failed)",
                "Traceback (most recent call last):",
            ],
        }

        log = (triage_dir / "attempt-2.log").read_text()
        assert "result: failed" in log
        assert "--- stdout ---" in log
        assert "bad GGUF magic" in log
        assert sorted(p.name for p in triage_dir.iterdir()) == [
            "attempt-1.log", "attempt-2.log", "attempt-3.log", "summary.json",
        ]

    def test_no_early_stop(self, temp_dir: Path, data_dir: Path) -> None:
        input_path = temp_dir / "ok.onnx"
        _ = input_path.write_bytes(b"\x08\x07")
        executor = ScriptedExecutor()

        summary = execute_triage(
            executor, FuzzConfig(repro_retries=5), TargetKind.ONNX, input_path, data_dir
        )

        assert len(executor.calls) == 5
        assert summary.success_count == 5
        assert summary.verdict == "reproduced"

    def test_timeout_counts(self, temp_dir: Path, data_dir: Path) -> None:
        input_path = temp_dir / "slow.safetensors"
        _ = input_path.write_bytes(b"")
        executor = ScriptedExecutor({
            "slow.safetensors": [
                make_outcome(ResultKind.TIMEOUT),
                make_outcome(ResultKind.SUCCESS, "ok"),
            ],
        })

        summary = execute_triage(
            executor,
            FuzzConfig(repro_retries=2),
            TargetKind.SAFETENSORS,
            input_path,
            data_dir,
        )

        assert summary.timeout_count == 1
        assert summary.success_count == 1
        assert summary.verdict == "timeout"

    def test_missing_input(self, temp_dir: Path, data_dir: Path) -> None:
        with pytest.raises(ConfigError, match="not found"):
            _ = execute_triage(
                ScriptedExecutor(),
                FuzzConfig(),
                TargetKind.GGUF,
                temp_dir / "missing.gguf",
                data_dir,
            )
        assert not (data_dir / "triage").exists()

    def test_invalid_retries(self, temp_dir: Path, data_dir: Path) -> None:
        input_path = temp_dir / "x.gguf"
        _ = input_path.write_bytes(b"")
        with pytest.raises(ConfigError, match="repro retries"):
            _ = execute_triage(
                ScriptedExecutor(),
                FuzzConfig(repro_retries=0),
                TargetKind.GGUF,
                input_path,
                data_dir,
            )
