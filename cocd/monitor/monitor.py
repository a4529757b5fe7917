from __future__ import annotations

import queue
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set, Tuple

from cocd.errors import CocdError, GitHubAPIError
from cocd.github.client import GitHubAPI
from cocd.logging import get_logger, log_extra
from cocd.monitor.progress import ProgressTracker, RepoStats, ScanMode, ScanProgress, utc_now
from cocd.monitor.repository import RepositoryManager, memory_usage
from cocd.monitor.worker import DEFAULT_WORKERS, JobUpdate, WorkerPool, deliver
from cocd.scanner.models import JobKey, JobRecord, JobStatus, sort_by_start, sort_recent
from cocd.scanner.scanner import RecentJobsScanner

log = get_logger(__name__)

MAX_FULL_REPOSITORIES = 200
MAX_TARGETED_REPOSITORIES = 100
FULL_SWEEP_TIMEOUT = 300.0
TARGETED_SWEEP_TIMEOUT = 90.0
DEFAULT_INTERVAL = 60

PendingCallback = Callable[[List[JobRecord], Set[str]], None]
ErrorCallback = Callable[[CocdError], None]


class Monitor:
    """
    Runs sweeps over the organization's repositories.

    Full sweeps look at up to 200 recently pushed repositories and ask GitHub only
    for runs in ``waiting`` state; targeted sweeps read the latest runs of the
    100 most active repositories. Both stream per-repository results.
    """

    def __init__(
        self,
        client: GitHubAPI,
        interval: int = DEFAULT_INTERVAL,
        repo: Optional[str] = None,
        max_workers: int = DEFAULT_WORKERS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.client = client
        self.interval = interval
        self.max_workers = max_workers
        self.repositories = RepositoryManager(client, repo=repo, clock=clock)
        self.progress = ProgressTracker(clock, labels=self._labels)
        self._identity: Optional[str] = None
        self._identity_lock = threading.Lock()

    @property
    def update_interval(self) -> int:
        return self.interval

    def _labels(self) -> Dict[str, str]:
        return {"cache_status": self.repositories.cache_status(), "memory_usage": memory_usage()}

    def scan_progress(self) -> ScanProgress:
        return self.progress.snapshot()

    def update_countdown(self) -> ScanProgress:
        return self.progress.update_countdown()

    def authenticated_identity(self) -> str:
        """Login of the token owner; resolved once, retried only after a failure."""
        with self._identity_lock:
            if self._identity is None:
                self._identity = self.client.authenticated_user() or "unknown"
            return self._identity

    def stream(
        self,
        cancel: threading.Event,
        sink: "queue.Queue[JobUpdate]",
        mode: ScanMode = ScanMode.TARGETED,
    ) -> bool:
        """
        Run one sweep, pushing a JobUpdate into ``sink`` as each repository finishes.
        A failure to enumerate repositories is pushed once as a terminal update.
        """
        full = mode == ScanMode.FULL
        try:
            targets = self.repositories.targets(MAX_FULL_REPOSITORIES if full else MAX_TARGETED_REPOSITORIES)
            stats = RepoStats.from_repositories(self.repositories.repositories())
        except GitHubAPIError as exc:
            log.error("sweep_setup_failed", extra=log_extra(view=mode.value, error=str(exc)))
            deliver(sink, JobUpdate(error=exc, terminal=True, progress=self.progress.snapshot()), cancel)
            return False

        self.progress.initialize(mode, stats, len(targets), self.max_workers)
        scanner = RecentJobsScanner(self.client, status=JobStatus.WAITING.value if full else None)
        pool = WorkerPool(scanner, self.max_workers)
        log.info("sweep_started", extra=log_extra(view=mode.value, count=len(targets)))
        try:
            ok = pool.scan_streaming(
                cancel,
                targets,
                sink,
                tracker=self.progress,
                timeout=FULL_SWEEP_TIMEOUT if full else TARGETED_SWEEP_TIMEOUT,
            )
        finally:
            self.progress.set_completed()
        if ok:
            self.progress.set_scan_completed()
        log.info("sweep_finished", extra=log_extra(view=mode.value, count=len(targets), error=None if ok else "incomplete"))
        return ok

    def fetch_with_failures(
        self, cancel: Optional[threading.Event] = None, mode: ScanMode = ScanMode.FULL
    ) -> Tuple[List[JobRecord], Set[str]]:
        """
        One complete sweep. Returns the merged jobs plus the names of repositories
        whose scan failed, so callers can keep what they last knew about them.
        Raises the terminal error if the sweep could not run.
        """
        sink: "queue.Queue[JobUpdate]" = queue.Queue()
        self.stream(cancel or threading.Event(), sink, mode)
        merged: Dict[JobKey, JobRecord] = {}
        failed: Set[str] = set()
        while True:
            try:
                update = sink.get_nowait()
            except queue.Empty:
                break
            if update.terminal and update.error is not None:
                if isinstance(update.error, CocdError):
                    raise update.error
                raise GitHubAPIError(str(update.error)) from update.error
            if update.error is not None:
                failed.add(update.repository)
                continue
            for job in update.jobs:
                merged[job.key] = job
        if mode == ScanMode.FULL:
            return sort_by_start(job for job in merged.values() if job.is_waiting), failed
        return sort_recent(merged.values()), failed

    def fetch(self, cancel: Optional[threading.Event] = None, mode: ScanMode = ScanMode.FULL) -> List[JobRecord]:
        jobs, _ = self.fetch_with_failures(cancel, mode)
        return jobs

    def set_next_scan(self, delay: float, cycle: Optional[int] = None) -> None:
        self.progress.set_next_scan(timedelta(seconds=delay), cycle)

    def start_monitoring(
        self,
        cancel: threading.Event,
        on_jobs: PendingCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        """
        Full-sweep cadence. Blocks until ``cancel`` is set, so run it on its own
        thread. A failed cycle is logged and reported; the next cycle is the retry.
        """
        cycle = 1
        self.set_next_scan(self.interval, cycle)
        while not cancel.wait(self.interval):
            cycle += 1
            self.set_next_scan(self.interval, cycle)
            try:
                jobs, failed = self.fetch_with_failures(cancel, ScanMode.FULL)
            except CocdError as exc:
                log.warning("full_sweep_failed", extra=log_extra(error=str(exc), error_category=exc.category))
                if on_error is not None:
                    on_error(exc)
                continue
            if cancel.is_set():
                break
            on_jobs(jobs, failed)
