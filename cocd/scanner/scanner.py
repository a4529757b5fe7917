from __future__ import annotations

from typing import List, Optional, Protocol

from cocd.github.client import GitHubAPI, Repository
from cocd.logging import get_logger, log_extra
from cocd.scanner.models import JobRecord

log = get_logger(__name__)

RUNS_PER_PAGE = 10


class Scanner(Protocol):
    def scan(self, repository: Repository) -> List[JobRecord]:
        ...


class RecentJobsScanner:
    """
    Fetch the latest page of workflow runs for a repository and normalize them.
    Errors are raised to the caller untouched; retries belong to the monitor cadence.
    """

    def __init__(self, client: GitHubAPI, status: Optional[str] = None) -> None:
        self.client = client
        self.status = status

    def scan(self, repository: Repository) -> List[JobRecord]:
        if repository.archived or repository.disabled:
            return []
        runs, _ = self.client.list_workflow_runs(repository.name, per_page=RUNS_PER_PAGE, status=self.status)
        jobs = [JobRecord.from_run(repository.name, run) for run in runs]
        log.debug("repository_scanned", extra=log_extra(repository=repository.name, count=len(jobs)))
        return jobs
