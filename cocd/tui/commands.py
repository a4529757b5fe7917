from __future__ import annotations

import queue
import threading
import webbrowser
from functools import lru_cache
from dataclasses import dataclass
from datetime import datetime, timezone as dt_timezone, tzinfo
from typing import Any, Callable, Dict, Optional, Protocol
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from cocd.config import Config
from cocd.errors import ActionPendingError, CocdError
from cocd.github.client import GitHubAPI
from cocd.logging import get_logger, log_extra
from cocd.monitor.progress import ScanMode, ScanProgress, utc_now
from cocd.monitor.worker import JobUpdate, deliver
from cocd.scanner.models import JobRecord
from cocd.tui.messages import (
    ActionPending,
    ActionSucceeded,
    DelayedRefresh,
    ErrorOccurred,
    IdentityResolved,
    JobUpdateReceived,
    PendingJobsLoaded,
    StreamFinished,
    Tick,
)
from cocd.tui.view_manager import View

log = get_logger(__name__)

TICK_INTERVAL = 1.0
REFRESH_DELAY = 3.0
STREAM_BUFFER = 100
STREAM_POLL = 0.2

Post = Callable[[Any], None]


@dataclass(frozen=True)
class Command:
    """
    One unit of work requested by the dashboard. ``run`` returns at most one
    message. Commands with a ``delay`` are timers and must not block.
    """

    name: str
    run: Callable[[], Optional[Any]]
    delay: float = 0.0


class MonitorAPI(Protocol):
    update_interval: int

    def stream(self, cancel: threading.Event, sink: "queue.Queue[JobUpdate]", mode: ScanMode = ...) -> bool:
        ...

    def fetch_with_failures(self, cancel: Optional[threading.Event] = None, mode: ScanMode = ...) -> Any:
        ...

    def start_monitoring(self, cancel: threading.Event, on_jobs: Callable, on_error: Optional[Callable] = None) -> None:
        ...

    def authenticated_identity(self) -> str:
        ...

    def scan_progress(self) -> ScanProgress:
        ...

    def update_countdown(self) -> ScanProgress:
        ...


@lru_cache(maxsize=None)
def _zone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name or "UTC")
    except (ZoneInfoNotFoundError, ValueError):
        log.warning("unknown_timezone", extra=log_extra(error=name))
        return dt_timezone.utc


def approval_message(timezone: str = "UTC", now: Optional[datetime] = None) -> str:
    stamp = (now or utc_now()).astimezone(_zone(timezone)).strftime("%Y-%m-%d %H:%M:%S %Z")
    return f"Remote approved by cocd at {stamp}"


class CommandHandler:
    """
    Builds the Commands the dashboard asks for. Results come back through
    ``post`` (thread-safe) or as the return value of ``Command.run``.
    """

    def __init__(
        self,
        monitor: MonitorAPI,
        client: GitHubAPI,
        config: Config,
        post: Post,
        cancel: threading.Event,
    ) -> None:
        self.monitor = monitor
        self.client = client
        self.config = config
        self.post = post
        self.cancel = cancel
        self._monitor_thread: Optional[threading.Thread] = None

    def start_monitoring(self) -> Command:
        def run() -> None:
            if self._monitor_thread is not None and self._monitor_thread.is_alive():
                return None
            self._monitor_thread = threading.Thread(
                target=self.monitor.start_monitoring,
                args=(self.cancel, self._on_full_sweep, self._on_full_sweep_error),
                name="cocd-monitor",
                daemon=True,
            )
            self._monitor_thread.start()
            return None

        return Command("start_monitoring", run)

    def _on_full_sweep(self, jobs: Any, failed: Any) -> None:
        self.post(PendingJobsLoaded(list(jobs), frozenset(failed)))

    def _on_full_sweep_error(self, exc: CocdError) -> None:
        self.post(ErrorOccurred(str(exc)))

    def load_pending(self) -> Command:
        def run() -> Any:
            try:
                jobs, failed = self.monitor.fetch_with_failures(self.cancel, ScanMode.FULL)
            except CocdError as exc:
                log.warning("pending_load_failed", extra=log_extra(view=View.PENDING.value, error=str(exc)))
                return ErrorOccurred(str(exc))
            return PendingJobsLoaded(list(jobs), frozenset(failed))

        return Command("load_pending", run)

    def load_streaming(self, view: View) -> Command:
        """
        One producer thread runs the sweep into a bounded queue; this worker
        forwards each update into the inbox and reports StreamFinished at the end.
        """
        mode = ScanMode.FULL if view == View.PENDING else ScanMode.TARGETED

        def run() -> Any:
            sink: "queue.Queue[JobUpdate]" = queue.Queue(maxsize=STREAM_BUFFER)
            outcome: Dict[str, bool] = {}

            def produce() -> None:
                try:
                    outcome["ok"] = self.monitor.stream(self.cancel, sink, mode)
                except Exception as exc:
                    log.exception("stream_failed", extra=log_extra(view=view.value, error=str(exc)))
                    deliver(sink, JobUpdate(error=exc, terminal=True), self.cancel)

            producer = threading.Thread(target=produce, name=f"cocd-stream-{view.value}", daemon=True)
            producer.start()
            while not self.cancel.is_set():
                try:
                    update = sink.get(timeout=STREAM_POLL)
                except queue.Empty:
                    if not producer.is_alive() and sink.empty():
                        break
                    continue
                self.post(JobUpdateReceived(view, update))
            return StreamFinished(view, ok=outcome.get("ok", False))

        return Command(f"load_streaming:{view.value}", run)

    def resolve_identity(self) -> Command:
        def run() -> Any:
            try:
                return IdentityResolved(self.monitor.authenticated_identity())
            except CocdError as exc:
                log.warning("identity_lookup_failed", extra=log_extra(error=str(exc)))
                return IdentityResolved("unknown")

        return Command("resolve_identity", run)

    def tick(self) -> Command:
        return Command("tick", Tick, delay=TICK_INTERVAL)

    def delayed_refresh(self, delay: float = REFRESH_DELAY) -> Command:
        return Command("delayed_refresh", DelayedRefresh, delay=delay)

    def cancel_run(self, job: JobRecord) -> Command:
        def run() -> Any:
            try:
                meta = self.client.cancel_workflow_run(job.repository, job.run_id)
            except ActionPendingError:
                return ActionPending("cancel", job)
            except CocdError as exc:
                log.warning(
                    "cancel_failed", extra=log_extra(repository=job.repository, run_id=job.run_id, error=str(exc))
                )
                return ErrorOccurred(f"Failed to cancel workflow: {exc}", action="cancel", job=job)
            if meta.pending:
                return ActionPending("cancel", job)
            return ActionSucceeded("cancel", job)

        return Command("cancel", run)

    def approve(self, job: JobRecord) -> Command:
        def run() -> Any:
            try:
                deployments, _ = self.client.get_pending_deployments(job.repository, job.run_id)
            except CocdError as exc:
                return ErrorOccurred(f"Failed to get pending deployments: {exc}", action="approve", job=job)
            if not deployments:
                return ErrorOccurred("No pending deployments found for this workflow", action="approve", job=job)
            environment_ids = [d.environment_id for d in deployments if d.environment_id is not None]
            if not environment_ids:
                return ErrorOccurred("No environment IDs found in pending deployments", action="approve", job=job)
            try:
                meta = self.client.approve_pending_deployment(
                    job.repository, job.run_id, environment_ids, approval_message(self.config.timezone)
                )
            except ActionPendingError:
                return ActionPending("approve", job)
            except CocdError as exc:
                log.warning(
                    "approve_failed", extra=log_extra(repository=job.repository, run_id=job.run_id, error=str(exc))
                )
                return ErrorOccurred(f"Failed to approve deployment: {exc}", action="approve", job=job)
            if meta.pending:
                return ActionPending("approve", job)
            return ActionSucceeded("approve", job)

        return Command("approve", run)

    def open_in_browser(self, job: JobRecord) -> Command:
        def run() -> Any:
            url = job.actions_url(self.config.base_url, self.config.org or "")
            try:
                opened = webbrowser.open(url)
            except webbrowser.Error as exc:
                return ErrorOccurred(f"Failed to open browser: {exc}")
            if not opened:
                return ErrorOccurred(f"Failed to open browser: {url}")
            return None

        return Command("open_in_browser", run)
