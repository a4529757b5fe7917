from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Callable, List, Optional

import psutil

from cocd.errors import AuthenticationError, GitHubAPIError
from cocd.github.client import GitHubAPI, Repository
from cocd.logging import get_logger, log_extra
from cocd.monitor.progress import utc_now

log = get_logger(__name__)

REPO_CACHE_TTL = timedelta(minutes=60)
ACTIVITY_WINDOW = timedelta(days=7)
REPOS_PER_PAGE = 100
MAX_REPO_PAGES = 50


def memory_usage() -> str:
    """Resident and virtual memory of this process, e.g. ``42MB/310MB``."""
    info = psutil.Process().memory_info()
    return f"{info.rss // (1024 * 1024)}MB/{info.vms // (1024 * 1024)}MB"


class RepositoryManager:
    """
    Lists organization repositories and picks scan targets. The listing is cached
    for an hour; the cache is shared by concurrent sweeps and guarded by a lock.
    Stale reads are acceptable.
    """

    def __init__(
        self,
        client: GitHubAPI,
        repo: Optional[str] = None,
        cache_ttl: timedelta = REPO_CACHE_TTL,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.client = client
        self.repo = repo
        self.cache_ttl = cache_ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._cached: List[Repository] = []
        self._fetched_at: Optional[datetime] = None

    def repositories(self) -> List[Repository]:
        """All repositories of the organization (archived and disabled included)."""
        if self.repo:
            return [Repository(name=self.repo)]
        with self._lock:
            if self._cached and self._fetched_at and self._clock() - self._fetched_at < self.cache_ttl:
                return list(self._cached)
        repos = self._fetch_all()
        with self._lock:
            self._cached = repos
            self._fetched_at = self._clock()
        return list(repos)

    def _fetch_all(self) -> List[Repository]:
        repos: List[Repository] = []
        page: Optional[int] = 1
        pages = 0
        while page and pages < MAX_REPO_PAGES:
            try:
                batch, meta = self.client.list_repositories(page=page, per_page=REPOS_PER_PAGE)
            except AuthenticationError:
                raise
            except GitHubAPIError as exc:
                raise GitHubAPIError(
                    f"failed to list repositories - check your token and organization name: {exc}",
                    status_code=exc.status_code,
                    metadata=exc.metadata,
                ) from exc
            repos.extend(batch)
            pages += 1
            page = meta.next_page
        log.info("repositories_listed", extra=log_extra(count=len(repos)))
        return repos

    def invalidate(self) -> None:
        with self._lock:
            self._cached = []
            self._fetched_at = None

    def targets(self, limit: int) -> List[Repository]:
        """
        Up to ``limit`` valid repositories ordered by recent activity. Repositories
        pushed within the activity window come first; if none qualify, all valid
        repositories ordered by last update are used instead.
        """
        repos = self.repositories()
        if self.repo:
            return repos
        valid = [repo for repo in repos if not repo.archived and not repo.disabled]
        cutoff = self._clock() - ACTIVITY_WINDOW
        recent = [repo for repo in valid if repo.pushed_at is not None and repo.pushed_at >= cutoff]
        if recent:
            recent.sort(key=lambda repo: repo.pushed_at, reverse=True)  # type: ignore[arg-type,return-value]
            return recent[:limit]
        fallback = sorted(
            valid,
            key=lambda repo: repo.updated_at or datetime.min.replace(tzinfo=cutoff.tzinfo),
            reverse=True,
        )
        return fallback[:limit]

    def cache_status(self) -> str:
        if self.repo:
            return "single repo"
        with self._lock:
            if not self._cached or self._fetched_at is None:
                return "Empty"
            remaining = self.cache_ttl - (self._clock() - self._fetched_at)
        if remaining <= timedelta(0):
            return "Expired"
        if remaining > timedelta(minutes=1):
            return f"ttl {int(remaining.total_seconds() // 60)}m"
        return f"ttl {int(remaining.total_seconds())}s"
