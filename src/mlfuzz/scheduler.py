# Copyright (c) Syntropy Systems
"""Corpus discovery and the worker pool that drains a run's job queue."""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional

from mlfuzz.artifacts import RunArtifacts
from mlfuzz.config import require_corpus_dir
from mlfuzz.errors import ConfigError, MlfuzzError, WorkerCrashedError
from mlfuzz.models import RunStatus
from mlfuzz.retry import JobOutcome, RetryPolicy
from mlfuzz.runner import ResultKind

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path

    from mlfuzz.config import FuzzConfig
    from mlfuzz.retry import Executor
    from mlfuzz.targets import TargetKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunJob:
    """One corpus file to push through the harness. ``id`` is unique per run."""

    id: int
    input: Path


def discover_corpus(
    corpus_dir: Path,
    target: TargetKind,
    max_jobs: Optional[int] = None,
) -> list[Path]:
    """List regular files directly under ``corpus_dir`` with the target's extension.

    Extension matching ignores case. The result is sorted and optionally
    truncated to ``max_jobs``. Raises ``ConfigError`` when nothing matches.
    """
    _ = require_corpus_dir(corpus_dir)
    try:
        entries = list(corpus_dir.iterdir())
    except OSError as e:
        msg = f"Cannot list corpus directory {corpus_dir}: {e}"
        raise ConfigError(msg) from e

    inputs = sorted(p for p in entries if p.is_file() and target.matches(p))
    if max_jobs is not None:
        inputs = inputs[:max_jobs]
    if not inputs:
        msg = f"No {target.extension} files found in {corpus_dir}"
        raise ConfigError(msg)
    return inputs


def build_jobs(inputs: Iterable[Path]) -> list[RunJob]:
    """Assign sequence ids in discovery order."""
    return [RunJob(id=index, input=path) for index, path in enumerate(inputs)]


class JobQueue:
    """FIFO of pending jobs. ``pop`` hands each job to exactly one caller."""

    def __init__(self, jobs: Iterable[RunJob] = ()) -> None:
        self._lock = threading.Lock()
        self._jobs: deque[RunJob] = deque(jobs)

    def push(self, job: RunJob) -> None:
        with self._lock:
            self._jobs.append(job)

    def pop(self) -> Optional[RunJob]:
        """Claim the next job, or None once the queue is drained."""
        with self._lock:
            if not self._jobs:
                return None
            return self._jobs.popleft()

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


@dataclass
class StatsSnapshot:
    total: int = 0
    success: int = 0
    failed: int = 0
    timeout: int = 0
    retries: int = 0


class RunStats:
    """Counters shared by every worker of a run. Updates are serialized."""

    def __init__(self, total: int = 0) -> None:
        self._lock = threading.Lock()
        self._counts = StatsSnapshot(total=total)

    def record(self, outcome: JobOutcome) -> None:
        with self._lock:
            kind = outcome.result.kind
            if kind is ResultKind.SUCCESS:
                self._counts.success += 1
            elif kind is ResultKind.FAILED:
                self._counts.failed += 1
            else:
                self._counts.timeout += 1
            self._counts.retries += outcome.retries

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            c = self._counts
            return StatsSnapshot(c.total, c.success, c.failed, c.timeout, c.retries)


def effective_workers(configured: int, job_count: int) -> int:
    """Clamp the worker count to ``[1, job_count]``."""
    return max(1, min(configured, job_count))


class JobScheduler:
    """Fixed pool of worker threads draining one shared job queue.

    Each worker pops a job, runs it through the retry policy, records the
    outcome and loops until the queue is empty. Locks are only held for the
    pop and the stats update, never while a harness runs.

    The first infrastructure error stops every worker from claiming more
    jobs and is re-raised once all workers have exited.
    """

    def __init__(
        self,
        policy: RetryPolicy,
        workers: int,
        on_job_done: Optional[Callable[[JobOutcome], None]] = None,
    ) -> None:
        self.policy = policy
        self.workers = workers
        self.on_job_done = on_job_done
        self._abort = threading.Event()
        self._failures: list[MlfuzzError] = []
        self._failures_lock = threading.Lock()

    def _fail(self, error: MlfuzzError) -> None:
        with self._failures_lock:
            self._failures.append(error)
        self._abort.set()

    def _worker_loop(self, queue: JobQueue, stats: RunStats) -> None:
        while not self._abort.is_set():
            job = queue.pop()
            if job is None:
                return
            outcome = self.policy.run(job)
            stats.record(outcome)
            if self.on_job_done is not None:
                self.on_job_done(outcome)

    def _worker_main(self, queue: JobQueue, stats: RunStats) -> None:
        name = threading.current_thread().name
        try:
            self._worker_loop(queue, stats)
        except MlfuzzError as e:
            logger.error("%s stopped: %s", name, e)
            self._fail(e)
        except Exception as e:  # noqa: BLE001
            logger.exception("%s crashed", name)
            self._fail(WorkerCrashedError(name, e))

    def run(self, jobs: list[RunJob]) -> tuple[StatsSnapshot, int]:
        """Process every job; returns final counts and the worker count used."""
        queue = JobQueue(jobs)
        stats = RunStats(total=len(jobs))
        worker_count = effective_workers(self.workers, len(jobs))
        logger.info("Dispatching %d jobs to %d workers", len(jobs), worker_count)

        threads = [
            threading.Thread(
                target=self._worker_main,
                args=(queue, stats),
                name=f"worker-{index}",
                daemon=True,
            )
            for index in range(worker_count)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        if self._failures:
            raise self._failures[0]
        return stats.snapshot(), worker_count


def execute_run(
    executor: Executor,
    config: FuzzConfig,
    target: TargetKind,
    corpus_dir: Path,
    data_dir: Path,
    on_job_done: Optional[Callable[[JobOutcome], None]] = None,
    on_start: Optional[Callable[[RunArtifacts, list[RunJob], int], None]] = None,
) -> RunStatus:
    """Discover the corpus, run every job and persist status.json."""
    config.validate()
    inputs = discover_corpus(corpus_dir, target, config.max_jobs)
    jobs = build_jobs(inputs)
    artifacts = RunArtifacts.create(data_dir)
    if on_start is not None:
        on_start(artifacts, jobs, effective_workers(config.workers, len(jobs)))

    policy = RetryPolicy(executor, target, config.restart_limit, artifacts)
    scheduler = JobScheduler(policy, config.workers, on_job_done=on_job_done)
    counts, worker_count = scheduler.run(jobs)

    status = RunStatus(
        run_id=artifacts.run_id,
        target=target.value,
        total=counts.total,
        success=counts.success,
        failed=counts.failed,
        timeout=counts.timeout,
        retries=counts.retries,
        workers=worker_count,
        timeout_sec=config.timeout_sec,
        restart_limit=config.restart_limit,
    )
    _ = artifacts.write_status(status)
    logger.info("Run %s finished: %s", artifacts.run_id, status.model_dump())
    return status
