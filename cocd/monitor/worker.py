from __future__ import annotations

import queue
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from cocd.errors import AuthenticationError, GitHubAPIError
from cocd.github.client import Repository
from cocd.logging import get_logger, log_extra
from cocd.monitor.progress import ProgressTracker, ScanProgress
from cocd.scanner.models import JobRecord
from cocd.scanner.scanner import Scanner

log = get_logger(__name__)

DEFAULT_WORKERS = 2
POLL_INTERVAL = 0.2
SEND_TIMEOUT = 0.2


@dataclass(frozen=True)
class JobUpdate:
    """One finished repository of a sweep, or a sweep-wide failure when ``terminal`` is set."""

    repository: str = ""
    jobs: List[JobRecord] = field(default_factory=list)
    progress: Optional[ScanProgress] = None
    error: Optional[BaseException] = None
    terminal: bool = False


def deliver(sink: "queue.Queue[JobUpdate]", update: JobUpdate, cancel: threading.Event) -> bool:
    """Put ``update`` on ``sink`` unless ``cancel`` fires first. Never blocks past cancellation."""
    while not cancel.is_set():
        try:
            sink.put(update, timeout=SEND_TIMEOUT)
            return True
        except queue.Full:
            continue
    return False


class WorkerPool:
    """
    Scans repositories with at most ``max_workers`` calls in flight and streams a
    JobUpdate per repository as soon as it finishes, in completion order.
    """

    def __init__(self, scanner: Scanner, max_workers: int = DEFAULT_WORKERS) -> None:
        self.scanner = scanner
        self.max_workers = max_workers

    def scan_streaming(
        self,
        cancel: threading.Event,
        repos: Iterable[Repository],
        sink: "queue.Queue[JobUpdate]",
        tracker: Optional[ProgressTracker] = None,
        timeout: Optional[float] = None,
    ) -> bool:
        """
        Returns True when every repository was reported, False when the sweep was
        cancelled, timed out, or halted by a terminal error.
        """
        targets = iter(list(repos))
        deadline = time.monotonic() + timeout if timeout else None
        pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="cocd-scan")
        in_flight: Dict[Future, Repository] = {}
        completed = 0
        try:
            while True:
                while len(in_flight) < self.max_workers and not cancel.is_set():
                    repo = next(targets, None)
                    if repo is None:
                        break
                    in_flight[pool.submit(self.scanner.scan, repo)] = repo
                if not in_flight or cancel.is_set():
                    return not cancel.is_set()
                done, _ = wait(in_flight, timeout=POLL_INTERVAL, return_when=FIRST_COMPLETED)
                if cancel.is_set():
                    return False
                if deadline is not None and time.monotonic() > deadline:
                    error = GitHubAPIError(f"scan timed out after {timeout:.0f}s", retryable=True)
                    log.warning("sweep_timeout", extra=log_extra(count=completed, error=str(error)))
                    deliver(sink, JobUpdate(error=error, terminal=True, progress=_snapshot(tracker)), cancel)
                    return False
                for future in done:
                    repo = in_flight.pop(future)
                    completed += 1
                    progress = tracker.update_completed(completed) if tracker else None
                    try:
                        update = JobUpdate(repository=repo.name, jobs=future.result(), progress=progress)
                    except AuthenticationError as exc:
                        log.error("sweep_halted", extra=log_extra(repository=repo.name, error=str(exc)))
                        deliver(sink, JobUpdate(repository=repo.name, progress=progress, error=exc, terminal=True), cancel)
                        return False
                    except Exception as exc:
                        log.warning(
                            "repository_scan_failed",
                            extra=log_extra(repository=repo.name, error=str(exc), error_type=type(exc).__name__),
                        )
                        update = JobUpdate(repository=repo.name, progress=progress, error=exc)
                    if not deliver(sink, update, cancel):
                        return False
        finally:
            pool.shutdown(wait=False, cancel_futures=True)


def _snapshot(tracker: Optional[ProgressTracker]) -> Optional[ScanProgress]:
    return tracker.snapshot() if tracker else None
