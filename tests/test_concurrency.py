# Copyright (c) Syntropy Systems
"""Concurrency and stress tests for the job scheduler."""

from __future__ import annotations

import threading
from collections import Counter
from pathlib import Path

import pytest

from conftest import ScriptedExecutor, make_outcome
from mlfuzz.artifacts import RunArtifacts
from mlfuzz.errors import HarnessSpawnError, WorkerCrashedError
from mlfuzz.retry import JobOutcome, RetryPolicy
from mlfuzz.runner import HarnessOutcome, ResultKind
from mlfuzz.scheduler import JobScheduler, RunJob, RunStats
from mlfuzz.targets import TargetKind


def _jobs(corpus_dir: Path, count: int) -> list[RunJob]:
    jobs = []
    for i in range(count):
        path = corpus_dir / f"input-{i:03d}.gguf"
        _ = path.write_bytes(b"GGUF")
        jobs.append(RunJob(id=i, input=path))
    return jobs


def _scheduler(executor, data_dir: Path, workers: int, restart_limit: int = 0, on_job_done=None):
    artifacts = RunArtifacts.create(data_dir)
    policy = RetryPolicy(executor, TargetKind.GGUF, restart_limit, artifacts)
    return JobScheduler(policy, workers, on_job_done=on_job_done)


class TestConcurrentClaims:
    """Test job claiming by multiple workers."""

    def test_every_job_runs_exactly_once(self, corpus_dir: Path, data_dir: Path) -> None:
        """Verify each job is claimed by exactly one worker."""
        num_jobs = 40
        executor = ScriptedExecutor(delay=0.005)
        done: list[int] = []
        lock = threading.Lock()

        def on_job_done(outcome: JobOutcome) -> None:
            with lock:
                done.append(outcome.job.id)

        scheduler = _scheduler(executor, data_dir, workers=4, on_job_done=on_job_done)
        counts, worker_count = scheduler.run(_jobs(corpus_dir, num_jobs))

        assert worker_count == 4
        assert sorted(done) == list(range(num_jobs))
        calls_per_input = Counter(name for name, _ in executor.calls)
        assert len(calls_per_input) == num_jobs
        assert set(calls_per_input.values()) == {1}
        assert counts.total == num_jobs
        assert counts.success == num_jobs

    def test_work_spread_across_workers(self, corpus_dir: Path, data_dir: Path) -> None:
        executor = ScriptedExecutor(delay=0.02)
        scheduler = _scheduler(executor, data_dir, workers=4)

        _ = scheduler.run(_jobs(corpus_dir, 16))

        threads = {thread for _, thread in executor.calls}
        assert len(threads) > 1
        assert threads <= {f"worker-{i}" for i in range(4)}

    def test_more_workers_than_jobs(self, corpus_dir: Path, data_dir: Path) -> None:
        """Only job_count workers are spawned, and each takes one job."""
        executor = ScriptedExecutor(delay=0.05)
        scheduler = _scheduler(executor, data_dir, workers=10)

        counts, worker_count = scheduler.run(_jobs(corpus_dir, 3))

        assert worker_count == 3
        assert counts.total == 3
        threads = [thread for _, thread in executor.calls]
        assert len(threads) == 3
        assert set(threads) <= {"worker-0", "worker-1", "worker-2"}

    def test_counts_add_up_under_contention(self, corpus_dir: Path, data_dir: Path) -> None:
        jobs = _jobs(corpus_dir, 30)
        scripts: dict[str, list[HarnessOutcome]] = {}
        for job in jobs:
            if job.id % 3 == 1:
                scripts[job.input.name] = [make_outcome(ResultKind.FAILED, "f")] * 2
            elif job.id % 3 == 2:
                scripts[job.input.name] = [
                    make_outcome(ResultKind.TIMEOUT, "t"),
                    make_outcome(ResultKind.SUCCESS, "ok"),
                ]
        executor = ScriptedExecutor(scripts, delay=0.002)
        scheduler = _scheduler(executor, data_dir, workers=6, restart_limit=1)

        counts, _ = scheduler.run(jobs)

        assert counts.success + counts.failed + counts.timeout == counts.total == 30
        assert counts.failed == 10
        assert counts.success == 20
        assert counts.timeout == 0
        assert counts.retries == 20
        assert len(executor.calls) == 50


class TestRunStats:
    """Test shared counters."""

    def test_concurrent_record(self, temp_dir: Path) -> None:
        stats = RunStats(total=800)
        job = RunJob(0, temp_dir / "x.gguf")
        outcomes = [
            JobOutcome(job, make_outcome(ResultKind.SUCCESS).result, 1, 0),
            JobOutcome(job, make_outcome(ResultKind.FAILED).result, 2, 1),
        ]

        def hammer(outcome: JobOutcome) -> None:
            for _ in range(200):
                stats.record(outcome)

        threads = [threading.Thread(target=hammer, args=(outcomes[i % 2],)) for i in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snap = stats.snapshot()
        assert snap.success == 400
        assert snap.failed == 400
        assert snap.retries == 400
        assert snap.total == 800


class _ExplodingExecutor(ScriptedExecutor):
    """Raises for one input, succeeds for the rest."""

    def __init__(self, bad_name: str, error: Exception) -> None:
        super().__init__(delay=0.01)
        self.bad_name = bad_name
        self.error = error

    def execute(self, target, input_path: Path) -> HarnessOutcome:
        if input_path.name == self.bad_name:
            raise self.error
        return super().execute(target, input_path)


class TestAbort:
    """Test that infrastructure failures stop the run."""

    def test_spawn_error_aborts_and_propagates(self, corpus_dir: Path, data_dir: Path) -> None:
        error = HarnessSpawnError(["harness"], OSError("no such file"))
        executor = _ExplodingExecutor("input-000.gguf", error)
        scheduler = _scheduler(executor, data_dir, workers=1)

        with pytest.raises(HarnessSpawnError):
            _ = scheduler.run(_jobs(corpus_dir, 20))

        # The single worker stops at the first job, nothing else is claimed
        assert executor.calls == []

    def test_abort_stops_other_workers(self, corpus_dir: Path, data_dir: Path) -> None:
        error = HarnessSpawnError(["harness"], OSError("gone"))
        executor = _ExplodingExecutor("input-002.gguf", error)
        scheduler = _scheduler(executor, data_dir, workers=2)

        with pytest.raises(HarnessSpawnError):
            _ = scheduler.run(_jobs(corpus_dir, 50))

        assert len(executor.calls) < 49

    def test_unexpected_exception_becomes_worker_crash(
        self, corpus_dir: Path, data_dir: Path
    ) -> None:
        executor = _ExplodingExecutor("input-001.gguf", RuntimeError("boom"))
        scheduler = _scheduler(executor, data_dir, workers=3)

        with pytest.raises(WorkerCrashedError) as exc_info:
            _ = scheduler.run(_jobs(corpus_dir, 6))

        assert isinstance(exc_info.value.cause, RuntimeError)
        assert exc_info.value.worker_name.startswith("worker-")
        assert "boom" in str(exc_info.value)
