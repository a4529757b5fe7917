from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Dict, Iterable, Optional

from cocd.github.client import Repository


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScanMode(str, Enum):
    IDLE = "Idle"
    FULL = "Full"
    TARGETED = "Targeted"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class RepoStats:
    total: int = 0
    archived: int = 0
    disabled: int = 0
    valid: int = 0

    @classmethod
    def from_repositories(cls, repos: Iterable[Repository]) -> "RepoStats":
        total = archived = disabled = valid = 0
        for repo in repos:
            total += 1
            if repo.archived:
                archived += 1
            elif repo.disabled:
                disabled += 1
            else:
                valid += 1
        return cls(total=total, archived=archived, disabled=disabled, valid=valid)


@dataclass(frozen=True)
class ScanProgress:
    """Immutable snapshot of the current background sweep, read by the render path."""

    scan_mode: ScanMode = ScanMode.IDLE
    total_repos: int = 0
    target_repos: int = 0
    completed_repos: int = 0
    archived_repos: int = 0
    disabled_repos: int = 0
    active_workers: int = 0
    next_scan_at: Optional[datetime] = None
    last_scan_at: Optional[datetime] = None
    scan_countdown: int = 0
    scan_cycle: int = 0
    state_started_at: Optional[datetime] = None
    state_duration: int = 0
    cache_status: str = "Empty"
    memory_usage: str = "-"

    @property
    def is_scanning(self) -> bool:
        return self.scan_mode in (ScanMode.FULL, ScanMode.TARGETED)


class ProgressTracker:
    """
    Owner of the monitor's ScanProgress. Worker threads write through the lock;
    readers only ever receive frozen snapshots.
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = utc_now,
        labels: Optional[Callable[[], Dict[str, str]]] = None,
    ) -> None:
        self._clock = clock
        self._labels = labels
        self._lock = threading.Lock()
        self._progress = ScanProgress(state_started_at=clock())

    def snapshot(self) -> ScanProgress:
        with self._lock:
            progress = self._progress
        return self._labelled(progress)

    def _labelled(self, progress: ScanProgress) -> ScanProgress:
        # labels are read outside the lock; they take locks of their own
        if self._labels is None:
            return progress
        return replace(progress, **self._labels())

    def initialize(self, mode: ScanMode, stats: RepoStats, target_repos: int, max_workers: int) -> None:
        with self._lock:
            current = self._progress
            started = current.state_started_at if current.scan_mode == mode else self._clock()
            self._progress = replace(
                current,
                scan_mode=mode,
                total_repos=stats.total,
                target_repos=target_repos,
                completed_repos=0,
                archived_repos=stats.archived,
                disabled_repos=stats.disabled,
                active_workers=max_workers,
                state_started_at=started,
                state_duration=0,
            )

    def update_completed(self, completed: int) -> ScanProgress:
        with self._lock:
            if completed > self._progress.completed_repos:
                self._progress = replace(self._progress, completed_repos=completed)
            progress = self._progress
        return self._labelled(progress)

    def set_completed(self) -> None:
        with self._lock:
            self._progress = replace(
                self._progress,
                scan_mode=ScanMode.COMPLETED,
                state_started_at=self._clock(),
                state_duration=0,
            )

    def set_scan_completed(self) -> None:
        with self._lock:
            self._progress = replace(self._progress, last_scan_at=self._clock())

    def set_next_scan(self, delay: timedelta, cycle: Optional[int] = None) -> None:
        with self._lock:
            now = self._clock()
            next_at = now + delay
            self._progress = replace(
                self._progress,
                next_scan_at=next_at,
                scan_cycle=self._progress.scan_cycle if cycle is None else cycle,
                scan_countdown=max(0, int((next_at - now).total_seconds())),
            )

    def update_countdown(self) -> ScanProgress:
        with self._lock:
            now = self._clock()
            progress = self._progress
            countdown = progress.scan_countdown
            if progress.next_scan_at is not None:
                countdown = max(0, int((progress.next_scan_at - now).total_seconds()))
            duration = progress.state_duration
            if progress.state_started_at is not None:
                duration = max(0, int((now - progress.state_started_at).total_seconds()))
            self._progress = replace(progress, scan_countdown=countdown, state_duration=duration)
            progress = self._progress
        return self._labelled(progress)
