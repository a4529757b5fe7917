from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cocd.github.client import parse_timestamp

JobKey = Tuple[str, int, int]

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class JobStatus(str, Enum):
    WAITING = "waiting"
    QUEUED = "queued"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    SUCCESS = "success"
    FAILURE = "failure"
    CANCELLED = "cancelled"


ACTIVE_STATUSES = frozenset({JobStatus.WAITING.value, JobStatus.QUEUED.value, JobStatus.IN_PROGRESS.value})


@dataclass(frozen=True)
class JobRecord:
    """One workflow run observed at one point in time. Replaced, never mutated."""

    repository: str
    run_id: int
    id: int
    run_number: int = 0
    name: str = ""
    workflow_name: str = ""
    status: str = JobStatus.QUEUED.value
    conclusion: str = ""
    branch: str = ""
    event: str = ""
    actor: str = ""
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    # UI-only highlight state; not part of what GitHub reports.
    is_newly_scanned: bool = False
    highlight_until: Optional[datetime] = None

    @property
    def key(self) -> JobKey:
        return (self.repository, self.run_id, self.id)

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_STATUSES

    @property
    def is_waiting(self) -> bool:
        return self.status == JobStatus.WAITING.value

    def actions_url(self, base_url: str, org: str) -> str:
        web = (base_url or "").rstrip("/").removesuffix("/api/v3")
        if web in ("", "https://api.github.com", "http://api.github.com"):
            web = "https://github.com"
        return f"{web}/{org}/{self.repository}/actions/runs/{self.run_id}"

    @classmethod
    def from_run(cls, repository: str, run: Dict[str, Any]) -> "JobRecord":
        status = run.get("status") or ""
        conclusion = run.get("conclusion") or ""
        display_status = conclusion if status == JobStatus.COMPLETED.value and conclusion else status
        actor = (run.get("actor") or {}).get("login") or ""
        return cls(
            repository=repository,
            run_id=int(run.get("id") or 0),
            id=int(run.get("id") or 0),
            run_number=int(run.get("run_number") or 0),
            name=run.get("name") or run.get("display_title") or "",
            workflow_name=run.get("name") or "",
            status=display_status,
            conclusion=conclusion,
            branch=run.get("head_branch") or "",
            event=run.get("event") or "",
            actor=actor,
            started_at=parse_timestamp(run.get("run_started_at") or run.get("created_at")),
            completed_at=parse_timestamp(run.get("updated_at")),
        )


def sort_by_start(jobs: Iterable[JobRecord], newest: bool = False) -> List[JobRecord]:
    """
    Order by start time. Jobs without a start time go last when oldest-first and
    first when newest-first, so not-yet-started work stays grouped.
    """
    jobs = list(jobs)
    started = [job for job in jobs if job.started_at is not None]
    unstarted = [job for job in jobs if job.started_at is None]
    started.sort(key=lambda job: job.started_at, reverse=newest)  # type: ignore[arg-type,return-value]
    return unstarted + started if newest else started + unstarted


def recency(job: JobRecord) -> datetime:
    return job.completed_at or job.started_at or _EPOCH


def sort_recent(jobs: Iterable[JobRecord]) -> List[JobRecord]:
    """Newest first by completion time, falling back to start time."""
    return sorted(jobs, key=recency, reverse=True)
