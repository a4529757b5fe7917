from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Collection, Dict, Iterable, List, Optional, Set

from cocd.scanner.models import JobKey, JobRecord, JobStatus, recency, sort_by_start, sort_recent

PAGE_SIZE = 50
HIGHLIGHT_DURATION = timedelta(seconds=3)
COMPLETED_RETENTION = timedelta(minutes=10)
MAX_COMPLETED = 100
MAX_RETIRED = 5000
MAX_RECENT_JOBS = 1000


class View(str, Enum):
    PENDING = "pending"
    RECENT = "recent"


class Overlay(str, Enum):
    NONE = "none"
    CANCEL = "cancel"
    APPROVE = "approve"


@dataclass
class ConfirmationTarget:
    """The job a mutating action was requested for. Selection 0 is "No", 1 is "Yes"."""

    kind: Overlay
    job: JobRecord
    selection: int = 0

    @property
    def confirmed(self) -> bool:
        return self.selection == 1


class ViewManager:
    """
    In-memory state of the dashboard: both job lists, cursor, pagination,
    highlight marks, the locally known completed overlay and the confirmation
    sub-state. Owned by the UI loop; nothing here blocks or fails.

    Completed overlay entries are kept for ``completed_retention`` and at most
    ``max_completed`` of them. Keys that were retired stay remembered (bounded)
    so they never come back as active in the combined Pending view.
    """

    def __init__(
        self,
        page_size: int = PAGE_SIZE,
        highlight_duration: timedelta = HIGHLIGHT_DURATION,
        completed_retention: timedelta = COMPLETED_RETENTION,
        max_completed: int = MAX_COMPLETED,
    ) -> None:
        self.page_size = page_size
        self.highlight_duration = highlight_duration
        self.completed_retention = completed_retention
        self.max_completed = max_completed
        self.current_view = View.RECENT
        self.cursor = 0
        self.page = 0
        self.pending: List[JobRecord] = []
        self.recent: List[JobRecord] = []
        self.confirmation: Optional[ConfirmationTarget] = None
        self._completed: "OrderedDict[JobKey, JobRecord]" = OrderedDict()
        self._retired: "OrderedDict[JobKey, None]" = OrderedDict()
        self._in_flight: Set[JobKey] = set()

    # views and navigation

    def switch_to(self, view: View) -> None:
        self.current_view = view
        self.cursor = 0
        if view == View.RECENT:
            self.page = 0

    def toggle(self) -> View:
        self.switch_to(View.RECENT if self.current_view == View.PENDING else View.PENDING)
        return self.current_view

    def move_cursor(self, delta: int, visible_count: int) -> None:
        self.cursor = max(0, min(self.cursor + delta, visible_count - 1))

    def clamp_cursor(self, visible_count: int) -> None:
        self.move_cursor(0, visible_count)

    def page_count(self, total: Optional[int] = None) -> int:
        total = len(self.recent) if total is None else total
        return -(-total // self.page_size)

    def change_page(self, delta: int, total: Optional[int] = None) -> None:
        last = max(1, self.page_count(total)) - 1
        self.page = max(0, min(self.page + delta, last))
        self.cursor = 0

    def paginated(self, jobs: Optional[List[JobRecord]] = None) -> List[JobRecord]:
        jobs = self.recent if jobs is None else jobs
        start = self.page * self.page_size
        return jobs[start:start + self.page_size]

    def visible_jobs(self, now: datetime) -> List[JobRecord]:
        if self.current_view == View.PENDING:
            return self.combined_pending(now)
        return self.paginated()

    def visible_count(self, now: datetime) -> int:
        return len(self.visible_jobs(now))

    def selected_job(self, now: datetime) -> Optional[JobRecord]:
        jobs = self.visible_jobs(now)
        if 0 <= self.cursor < len(jobs):
            return jobs[self.cursor]
        return None

    # data

    def merge(self, view: View, jobs: Iterable[JobRecord], now: datetime) -> None:
        """Fold a streamed batch into one view's list, replacing by key or appending."""
        current = self.pending if view == View.PENDING else self.recent
        index: Dict[JobKey, int] = {job.key: i for i, job in enumerate(current)}
        merged = list(current)
        for job in jobs:
            pos = index.get(job.key)
            marked = self._mark(job, merged[pos] if pos is not None else None, now)
            if pos is None:
                index[job.key] = len(merged)
                merged.append(marked)
            else:
                merged[pos] = marked
        if view == View.PENDING:
            self.pending = sort_by_start(merged)
        else:
            self.recent = sort_recent(merged)[:MAX_RECENT_JOBS]

    def replace_pending(
        self, jobs: Iterable[JobRecord], now: datetime, keep_repositories: Collection[str] = ()
    ) -> None:
        """
        Replace the Pending list with a complete snapshot. Active jobs missing from
        it are moved into the completed overlay. Jobs of ``keep_repositories``
        (whose scan failed) are carried over untouched instead.
        """
        previous = {job.key: job for job in self.pending}
        fresh: Dict[JobKey, JobRecord] = {}
        for job in jobs:
            fresh[job.key] = self._mark(job, previous.get(job.key), now)
        for key, job in previous.items():
            if key in fresh:
                continue
            if job.repository in keep_repositories:
                fresh[key] = job
            elif job.is_active:
                self._retire(job, now)
        self.expire(now)
        self.pending = sort_by_start(fresh.values())

    def combined_pending(self, now: datetime) -> List[JobRecord]:
        """
        Raw pending jobs plus completed overlay entries. Active jobs come first,
        oldest start first; terminal and overlay jobs follow, newest completion first.
        """
        overlay = [job for job in self._completed.values() if self._retained(job, now)]
        overlay_keys = {job.key for job in overlay}
        raw = [job for job in self.pending if job.key not in overlay_keys and job.key not in self._retired]
        active = [job for job in raw if job.is_active]
        terminal = [job for job in raw if not job.is_active] + overlay
        return sort_by_start(active) + sorted(terminal, key=recency, reverse=True)

    def is_completed(self, job: JobRecord) -> bool:
        return job.key in self._completed

    def expire(self, now: datetime) -> None:
        for key in [key for key, job in self._completed.items() if not self._retained(job, now)]:
            del self._completed[key]

    def _retained(self, job: JobRecord, now: datetime) -> bool:
        return job.completed_at is not None and now - job.completed_at < self.completed_retention

    def _retire(self, job: JobRecord, now: datetime) -> None:
        self._completed[job.key] = replace(
            job,
            status=JobStatus.COMPLETED.value,
            completed_at=now,
            is_newly_scanned=False,
            highlight_until=None,
        )
        self._completed.move_to_end(job.key)
        while len(self._completed) > self.max_completed:
            self._completed.popitem(last=False)
        self._retired[job.key] = None
        self._retired.move_to_end(job.key)
        while len(self._retired) > MAX_RETIRED:
            self._retired.popitem(last=False)

    # highlight

    def _mark(self, job: JobRecord, previous: Optional[JobRecord], now: datetime) -> JobRecord:
        if previous is None:
            return replace(job, is_newly_scanned=True, highlight_until=now + self.highlight_duration)
        until = previous.highlight_until
        if until is not None and now < until:
            return replace(job, is_newly_scanned=True, highlight_until=until)
        return replace(job, is_newly_scanned=False, highlight_until=None)

    @staticmethod
    def is_highlighted(job: JobRecord, now: datetime) -> bool:
        return job.is_newly_scanned and job.highlight_until is not None and now < job.highlight_until

    # confirmation overlay

    @property
    def overlay(self) -> Overlay:
        return self.confirmation.kind if self.confirmation else Overlay.NONE

    def show_confirmation(self, kind: Overlay, job: JobRecord) -> bool:
        if self.confirmation is not None or kind == Overlay.NONE:
            return False
        self.confirmation = ConfirmationTarget(kind=kind, job=job)
        return True

    def select(self, selection: int) -> None:
        if self.confirmation is not None and selection in (0, 1):
            self.confirmation.selection = selection

    def hide_confirmation(self) -> None:
        self.confirmation = None

    # at most one outstanding action per job

    def begin_action(self, key: JobKey) -> bool:
        if key in self._in_flight:
            return False
        self._in_flight.add(key)
        return True

    def finish_action(self, key: JobKey) -> None:
        self._in_flight.discard(key)

    def action_in_flight(self, key: JobKey) -> bool:
        return key in self._in_flight
