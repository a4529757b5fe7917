"""Messages delivered into the dashboard loop. Background work only ever produces these."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional

from cocd.monitor.worker import JobUpdate
from cocd.scanner.models import JobRecord
from cocd.tui.view_manager import View


@dataclass(frozen=True)
class KeyPressed:
    key: str


@dataclass(frozen=True)
class Resized:
    width: int
    height: int


@dataclass(frozen=True)
class Tick:
    pass


@dataclass(frozen=True)
class PendingJobsLoaded:
    """A complete Pending snapshot. Replaces the list instead of merging into it."""

    jobs: List[JobRecord]
    failed_repositories: FrozenSet[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class JobUpdateReceived:
    """One repository of a streamed sweep for ``view``. Merged by key."""

    view: View
    update: JobUpdate


@dataclass(frozen=True)
class StreamFinished:
    view: View
    ok: bool = True


@dataclass(frozen=True)
class IdentityResolved:
    login: str


@dataclass(frozen=True)
class ActionSucceeded:
    action: str
    job: JobRecord


@dataclass(frozen=True)
class ActionPending:
    """GitHub accepted the action but has not applied it yet."""

    action: str
    job: JobRecord


@dataclass(frozen=True)
class ErrorOccurred:
    message: str
    action: Optional[str] = None
    job: Optional[JobRecord] = None


@dataclass(frozen=True)
class DelayedRefresh:
    pass
