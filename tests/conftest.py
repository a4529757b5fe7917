import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pytest

# Ensure repository root is on sys.path so the in-tree package imports cleanly.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from cocd.config import Config  # noqa: E402
from cocd.github.client import PendingDeployment, Repository, ResponseMeta  # noqa: E402
from cocd.scanner.models import JobRecord  # noqa: E402

T0 = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


class FakeGitHub:
    """In-memory stand-in for GitHubClient; records every mutating call."""

    def __init__(self) -> None:
        self.repos: List[Repository] = []
        self.runs: Dict[str, Any] = {}
        self.login = "octocat"
        self.cancel_result: Any = ResponseMeta(status_code=202)
        self.deployments: Any = []
        self.approve_result: Any = ResponseMeta(status_code=200)
        self.calls: List[Tuple[str, Any]] = []

    def list_repositories(self, page: int = 1, per_page: int = 100):
        self.calls.append(("list_repositories", page))
        return list(self.repos), ResponseMeta(status_code=200)

    def list_workflow_runs(self, repository: str, per_page: int = 10, status: Optional[str] = None, page: int = 1):
        self.calls.append(("list_workflow_runs", (repository, status)))
        result = self.runs.get(repository, [])
        if isinstance(result, Exception):
            raise result
        runs = [run for run in result if status is None or run.get("status") == status]
        return runs, ResponseMeta(status_code=200)

    def cancel_workflow_run(self, repository: str, run_id: int) -> ResponseMeta:
        self.calls.append(("cancel", (repository, run_id)))
        if isinstance(self.cancel_result, Exception):
            raise self.cancel_result
        return self.cancel_result

    def get_pending_deployments(self, repository: str, run_id: int):
        self.calls.append(("get_pending_deployments", (repository, run_id)))
        if isinstance(self.deployments, Exception):
            raise self.deployments
        return list(self.deployments), ResponseMeta(status_code=200)

    def approve_pending_deployment(self, repository: str, run_id: int, environment_ids: Sequence[int], comment: str):
        self.calls.append(("approve", (repository, run_id, list(environment_ids), comment)))
        if isinstance(self.approve_result, Exception):
            raise self.approve_result
        return self.approve_result

    def authenticated_user(self) -> str:
        self.calls.append(("user", None))
        return self.login

    def called(self, name: str) -> List[Any]:
        return [args for call, args in self.calls if call == name]


def make_run(run_id: int, status: str = "waiting", started: Optional[datetime] = None, **extra: Any) -> Dict[str, Any]:
    started = started or T0 - timedelta(minutes=run_id)
    run = {
        "id": run_id,
        "run_number": run_id,
        "name": f"deploy-{run_id}",
        "status": status,
        "conclusion": None,
        "head_branch": "main",
        "event": "push",
        "actor": {"login": "dev"},
        "run_started_at": started.isoformat().replace("+00:00", "Z"),
        "updated_at": started.isoformat().replace("+00:00", "Z"),
    }
    run.update(extra)
    return run


def make_job(
    repository: str = "api",
    run_id: int = 1,
    status: str = "waiting",
    started_at: Optional[datetime] = None,
    completed_at: Optional[datetime] = None,
) -> JobRecord:
    return JobRecord(
        repository=repository,
        run_id=run_id,
        id=run_id,
        run_number=run_id,
        name=f"deploy-{run_id}",
        workflow_name="deploy",
        status=status,
        branch="main",
        actor="dev",
        started_at=started_at or T0 - timedelta(minutes=run_id),
        completed_at=completed_at,
    )


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Keep the developer's own config, tokens and gh session out of every test."""
    for name in (
        "COCD_CONFIG",
        "COCD_GITHUB_TOKEN",
        "COCD_GITHUB_BASE_URL",
        "COCD_GITHUB_ORG",
        "COCD_GITHUB_REPO",
        "COCD_MONITOR_INTERVAL",
        "COCD_MONITOR_TIMEZONE",
        "COCD_LOG_LEVEL",
        "COCD_LOG_FILE",
        "COCD_LOG_JSON",
        "GITHUB_TOKEN",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg"))
    monkeypatch.setattr("cocd.config.gh_cli_token", lambda: None)
    return tmp_path


@pytest.fixture
def clock() -> Clock:
    return Clock()


@pytest.fixture
def github() -> FakeGitHub:
    return FakeGitHub()


@pytest.fixture
def config() -> Config:
    return Config(token="t0ken", org="acme", timezone="UTC", version="1.2.3")


@pytest.fixture
def deployment() -> PendingDeployment:
    return PendingDeployment(environment_id=42, environment_name="production", current_user_can_approve=True)
