import queue
import threading
from datetime import timedelta

import pytest
from conftest import T0, make_run

from cocd.errors import AuthenticationError, GitHubAPIError
from cocd.github.client import Repository
from cocd.monitor import Monitor, ScanMode
from cocd.monitor.progress import ProgressTracker, RepoStats
from cocd.monitor.repository import RepositoryManager
from cocd.monitor.worker import JobUpdate, WorkerPool, deliver
from cocd.scanner.scanner import RecentJobsScanner


def repo(name: str, hours_ago: int = 1, **flags) -> Repository:
    pushed = T0 - timedelta(hours=hours_ago)
    return Repository(name=name, pushed_at=pushed, updated_at=pushed, **flags)


def drain(sink: "queue.Queue[JobUpdate]"):
    updates = []
    while not sink.empty():
        updates.append(sink.get_nowait())
    return updates


@pytest.fixture
def three_repos(github):
    github.repos = [repo("a"), repo("b", 2), repo("c", 3)]
    github.runs["a"] = [make_run(1, status="waiting"), make_run(2, status="completed", conclusion="success")]
    github.runs["b"] = [make_run(3, status="completed", conclusion="success")]
    github.runs["c"] = GitHubAPIError("500 Internal Server Error", status_code=500)
    return github


def test_full_stream_reports_every_repository_once(three_repos, clock) -> None:
    monitor = Monitor(three_repos, clock=clock)
    sink: "queue.Queue[JobUpdate]" = queue.Queue()

    ok = monitor.stream(threading.Event(), sink, ScanMode.FULL)

    updates = drain(sink)
    assert ok
    assert sorted(update.repository for update in updates) == ["a", "b", "c"]
    by_repo = {update.repository: update for update in updates}
    assert [job.run_id for job in by_repo["a"].jobs] == [1]
    assert by_repo["b"].jobs == []
    assert isinstance(by_repo["c"].error, GitHubAPIError)
    assert not by_repo["c"].terminal
    assert all(status == "waiting" for _, status in three_repos.called("list_workflow_runs"))
    assert monitor.scan_progress().last_scan_at == T0
    assert monitor.scan_progress().scan_mode == ScanMode.COMPLETED


def test_fetch_with_failures_keeps_only_waiting_and_names_failed_repos(three_repos, clock) -> None:
    jobs, failed = Monitor(three_repos, clock=clock).fetch_with_failures()
    assert [(job.repository, job.run_id) for job in jobs] == [("a", 1)]
    assert failed == {"c"}


def test_targeted_fetch_returns_all_runs_newest_first(three_repos, clock) -> None:
    jobs = Monitor(three_repos, clock=clock).fetch(mode=ScanMode.TARGETED)
    assert {job.run_id for job in jobs} == {1, 2, 3}
    assert all(status is None for _, status in three_repos.called("list_workflow_runs"))


def test_authentication_error_halts_the_sweep(github, clock) -> None:
    github.repos = [repo("a"), repo("b"), repo("c"), repo("d")]
    github.runs["a"] = AuthenticationError("401 Unauthorized: Bad credentials", status_code=401)
    monitor = Monitor(github, max_workers=1, clock=clock)
    sink: "queue.Queue[JobUpdate]" = queue.Queue()

    ok = monitor.stream(threading.Event(), sink, ScanMode.TARGETED)

    updates = drain(sink)
    assert not ok
    assert updates[-1].terminal
    assert isinstance(updates[-1].error, AuthenticationError)
    assert len(github.called("list_workflow_runs")) == 1
    with pytest.raises(AuthenticationError):
        monitor.fetch()


def test_repository_listing_failure_is_terminal(github, clock) -> None:
    def broken(page: int = 1, per_page: int = 100):
        raise GitHubAPIError("404 Not Found: Not Found", status_code=404)

    github.list_repositories = broken
    monitor = Monitor(github, clock=clock)
    sink: "queue.Queue[JobUpdate]" = queue.Queue()

    assert not monitor.stream(threading.Event(), sink)
    (update,) = drain(sink)
    assert update.terminal
    assert "check your token and organization name" in str(update.error)


def test_cancelled_stream_returns_false(three_repos, clock) -> None:
    cancel = threading.Event()
    cancel.set()
    sink: "queue.Queue[JobUpdate]" = queue.Queue()
    assert not Monitor(three_repos, clock=clock).stream(cancel, sink)


def test_deliver_gives_up_on_cancel_when_sink_is_full() -> None:
    sink: "queue.Queue[JobUpdate]" = queue.Queue(maxsize=1)
    cancel = threading.Event()
    assert deliver(sink, JobUpdate(repository="a"), cancel)
    cancel.set()
    assert not deliver(sink, JobUpdate(repository="b"), cancel)


def test_worker_pool_streams_without_tracker(github) -> None:
    github.runs["a"] = [make_run(1)]
    pool = WorkerPool(RecentJobsScanner(github), max_workers=2)
    sink: "queue.Queue[JobUpdate]" = queue.Queue()
    assert pool.scan_streaming(threading.Event(), [repo("a"), repo("b")], sink)
    assert {update.repository for update in drain(sink)} == {"a", "b"}


def test_targets_prefer_recent_pushes_and_skip_archived(github, clock) -> None:
    github.repos = [
        repo("stale", hours_ago=24 * 30),
        repo("fresh", hours_ago=1),
        repo("newer", hours_ago=0),
        repo("frozen", hours_ago=0, archived=True),
    ]
    manager = RepositoryManager(github, clock=clock)
    assert [r.name for r in manager.targets(10)] == ["newer", "fresh"]
    assert [r.name for r in manager.targets(1)] == ["newer"]


def test_targets_fall_back_to_last_update(github, clock) -> None:
    github.repos = [repo("older", hours_ago=24 * 30), repo("old", hours_ago=24 * 10)]
    manager = RepositoryManager(github, clock=clock)
    assert [r.name for r in manager.targets(10)] == ["old", "older"]


def test_repository_cache_expires_after_an_hour(github, clock) -> None:
    github.repos = [repo("a")]
    manager = RepositoryManager(github, clock=clock)
    assert manager.cache_status() == "Empty"
    manager.repositories()
    manager.repositories()
    assert len(github.called("list_repositories")) == 1
    assert manager.cache_status() == "ttl 60m"
    clock.advance(3601)
    assert manager.cache_status() == "Expired"
    manager.repositories()
    assert len(github.called("list_repositories")) == 2
    manager.invalidate()
    assert manager.cache_status() == "Empty"


def test_single_repository_mode_skips_listing(github, clock) -> None:
    manager = RepositoryManager(github, repo="api", clock=clock)
    assert [r.name for r in manager.targets(100)] == ["api"]
    assert github.called("list_repositories") == []
    assert manager.cache_status() == "single repo"


def test_progress_counts_are_monotonic(clock) -> None:
    tracker = ProgressTracker(clock)
    tracker.initialize(ScanMode.FULL, RepoStats(total=5, archived=1, valid=4), 4, 2)
    tracker.update_completed(2)
    assert tracker.update_completed(1).completed_repos == 2
    assert tracker.snapshot().is_scanning
    tracker.set_completed()
    assert not tracker.snapshot().is_scanning


def test_snapshots_carry_labels(clock) -> None:
    tracker = ProgressTracker(clock, labels=lambda: {"cache_status": "ttl 5m", "memory_usage": "9MB/20MB"})
    tracker.initialize(ScanMode.TARGETED, RepoStats(total=2, valid=2), 2, 2)
    for progress in (tracker.update_completed(1), tracker.update_countdown(), tracker.snapshot()):
        assert (progress.cache_status, progress.memory_usage) == ("ttl 5m", "9MB/20MB")


def test_countdown_and_state_duration(clock) -> None:
    tracker = ProgressTracker(clock)
    tracker.set_next_scan(timedelta(seconds=60), cycle=1)
    clock.advance(15)
    progress = tracker.update_countdown()
    assert progress.scan_countdown == 45
    assert progress.state_duration == 15
    assert progress.scan_cycle == 1


def test_repo_stats() -> None:
    stats = RepoStats.from_repositories([repo("a"), repo("b", archived=True), repo("c", disabled=True)])
    assert (stats.total, stats.archived, stats.disabled, stats.valid) == (3, 1, 1, 1)


def test_identity_is_cached(github) -> None:
    monitor = Monitor(github)
    assert monitor.authenticated_identity() == "octocat"
    assert monitor.authenticated_identity() == "octocat"
    assert len(github.called("user")) == 1


def test_start_monitoring_reports_sweeps_until_cancelled(three_repos, clock) -> None:
    monitor = Monitor(three_repos, interval=0.01, clock=clock)
    cancel = threading.Event()
    seen = []

    def on_jobs(jobs, failed):
        seen.append((jobs, failed))
        cancel.set()

    thread = threading.Thread(target=monitor.start_monitoring, args=(cancel, on_jobs), daemon=True)
    thread.start()
    thread.join(timeout=10)

    assert not thread.is_alive()
    jobs, failed = seen[0]
    assert [job.run_id for job in jobs] == [1]
    assert failed == {"c"}
