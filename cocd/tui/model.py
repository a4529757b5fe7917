from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Set

from cocd.config import Config
from cocd.logging import get_logger, log_extra
from cocd.monitor.progress import ScanProgress, utc_now
from cocd.scanner.models import JobRecord
from cocd.tui.commands import Command, CommandHandler, MonitorAPI
from cocd.tui.keys import KeyHandler, Mode
from cocd.tui.messages import (
    ActionPending,
    ActionSucceeded,
    DelayedRefresh,
    ErrorOccurred,
    IdentityResolved,
    JobUpdateReceived,
    KeyPressed,
    PendingJobsLoaded,
    Resized,
    StreamFinished,
    Tick,
)
from cocd.tui.view_manager import Overlay, View, ViewManager

log = get_logger(__name__)

STALE_AFTER = timedelta(seconds=30)


class Dashboard:
    """
    The dashboard reducer. ``update`` is the only place state changes: it takes
    one message, mutates the view state and returns the Commands to run next.
    Nothing here performs I/O.
    """

    def __init__(
        self,
        config: Config,
        monitor: MonitorAPI,
        commands: CommandHandler,
        clock: Callable[[], datetime] = utc_now,
        keys: Optional[KeyHandler] = None,
    ) -> None:
        self.config = config
        self.monitor = monitor
        self.commands = commands
        self.clock = clock
        self.keys = keys or KeyHandler()
        self.views = ViewManager()
        self.progress: ScanProgress = monitor.scan_progress()
        self.identity = "-"
        self.error = ""
        self.loading = True
        self.show_help = False
        self.quitting = False
        self.width = 0
        self.height = 0
        self.last_update: Optional[datetime] = None
        self.streaming: Set[View] = set()
        self._stream_failed: Set[View] = set()
        self._handlers: Dict[type, Callable[[Any], List[Command]]] = {
            KeyPressed: self._on_key,
            Resized: self._on_resize,
            Tick: self._on_tick,
            PendingJobsLoaded: self._on_pending_loaded,
            JobUpdateReceived: self._on_job_update,
            StreamFinished: self._on_stream_finished,
            IdentityResolved: self._on_identity,
            ActionSucceeded: self._on_action_succeeded,
            ActionPending: self._on_action_pending,
            ErrorOccurred: self._on_error,
            DelayedRefresh: self._on_delayed_refresh,
        }

    @property
    def mode(self) -> Mode:
        return self.keys.mode(self)

    def init(self) -> List[Command]:
        return [
            self.commands.start_monitoring(),
            *self._stream(View.RECENT),
            *self._stream(View.PENDING),
            self.commands.resolve_identity(),
            self.commands.tick(),
        ]

    def update(self, message: Any) -> List[Command]:
        handler = self._handlers.get(type(message))
        if handler is None:
            log.debug("unhandled_message", extra=log_extra(error=type(message).__name__))
            return []
        return handler(message)

    # message handlers

    def _on_key(self, message: KeyPressed) -> List[Command]:
        return self.keys.handle(self, message.key)

    def _on_resize(self, message: Resized) -> List[Command]:
        self.width, self.height = message.width, message.height
        return []

    def _on_tick(self, message: Tick) -> List[Command]:
        now = self.clock()
        self.progress = self.monitor.update_countdown()
        self.views.expire(now)
        self.views.clamp_cursor(self.views.visible_count(now))
        commands = [self.commands.tick()]
        if self.views.current_view == View.RECENT and self._recent_stale(now) and not self._scan_in_flight():
            self.loading = True
            commands.extend(self._stream(View.RECENT))
        return commands

    def _on_pending_loaded(self, message: PendingJobsLoaded) -> List[Command]:
        now = self.clock()
        self.views.replace_pending(message.jobs, now, keep_repositories=message.failed_repositories)
        self.views.clamp_cursor(self.views.visible_count(now))
        self.loading = bool(self.streaming)
        self.last_update = now
        self.error = ""
        return []

    def _on_job_update(self, message: JobUpdateReceived) -> List[Command]:
        update = message.update
        if update.progress is not None:
            self.progress = update.progress
        if update.error is not None:
            self._stream_failed.add(message.view)
            self.error = f"{update.repository}: {update.error}" if update.repository else str(update.error)
            return []
        jobs: List[JobRecord] = list(update.jobs)
        if message.view == View.PENDING:
            jobs = [job for job in jobs if job.is_waiting]
        if jobs:
            now = self.clock()
            self.views.merge(message.view, jobs, now)
            self.views.clamp_cursor(self.views.visible_count(now))
        return []

    def _on_stream_finished(self, message: StreamFinished) -> List[Command]:
        self.streaming.discard(message.view)
        self.loading = bool(self.streaming)
        self.progress = self.monitor.scan_progress()
        failed = message.view in self._stream_failed
        self._stream_failed.discard(message.view)
        if message.ok:
            self.last_update = self.clock()
            if not failed:
                self.error = ""
        return []

    def _on_identity(self, message: IdentityResolved) -> List[Command]:
        self.identity = message.login or "unknown"
        return []

    def _on_action_succeeded(self, message: ActionSucceeded) -> List[Command]:
        self.views.finish_action(message.job.key)
        self._dismiss_for(message.job)
        log.info(
            "action_succeeded",
            extra=log_extra(repository=message.job.repository, run_id=message.job.run_id, action=message.action),
        )
        return self.refresh()

    def _on_action_pending(self, message: ActionPending) -> List[Command]:
        self.views.finish_action(message.job.key)
        self._dismiss_for(message.job)
        return [self.commands.delayed_refresh()]

    def _on_error(self, message: ErrorOccurred) -> List[Command]:
        self.error = message.message
        self.loading = bool(self.streaming)
        if message.job is not None:
            self.views.finish_action(message.job.key)
            self._dismiss_for(message.job)
        return []

    def _on_delayed_refresh(self, message: DelayedRefresh) -> List[Command]:
        return self.refresh(silent=True)

    # helpers

    def _recent_stale(self, now: datetime) -> bool:
        return self.last_update is None or now - self.last_update > STALE_AFTER

    def _scan_in_flight(self) -> bool:
        return bool(self.streaming) or self.progress.is_scanning

    def _stream(self, view: View) -> List[Command]:
        if view in self.streaming:
            return []
        self.streaming.add(view)
        return [self.commands.load_streaming(view)]

    def _dismiss_for(self, job: JobRecord) -> None:
        target = self.views.confirmation
        if target is not None and target.job.key == job.key:
            self.views.hide_confirmation()

    def next_recent_scan_in(self, now: datetime) -> int:
        if self.last_update is None:
            return 0
        remaining = STALE_AFTER - (now - self.last_update)
        return max(0, int(remaining.total_seconds()))

    # key actions

    def quit(self) -> List[Command]:
        self.quitting = True
        return []

    def toggle_help(self) -> List[Command]:
        self.show_help = not self.show_help
        return []

    def toggle_view(self) -> List[Command]:
        if self.views.toggle() == View.RECENT:
            self.loading = True
            return self._stream(View.RECENT)
        return []

    def refresh(self, silent: bool = False) -> List[Command]:
        if not silent:
            self.loading = True
        if self.views.current_view == View.RECENT:
            return self._stream(View.RECENT)
        return [self.commands.load_pending()]

    def move_cursor(self, delta: int) -> List[Command]:
        self.views.move_cursor(delta, self.views.visible_count(self.clock()))
        return []

    def change_page(self, delta: int) -> List[Command]:
        if self.views.current_view == View.RECENT:
            self.views.change_page(delta)
        return []

    def open_selected(self) -> List[Command]:
        job = self.views.selected_job(self.clock())
        if job is None:
            return []
        return [self.commands.open_in_browser(job)]

    def request_cancel(self) -> List[Command]:
        job = self.views.selected_job(self.clock())
        if job is None:
            self.error = "No job selected for cancellation"
            return []
        if not job.is_active or self.views.is_completed(job):
            self.error = f"Only active jobs can be cancelled (status: {job.status})"
            return []
        return self._open_confirmation(Overlay.CANCEL, job)

    def request_approve(self) -> List[Command]:
        job = self.views.selected_job(self.clock())
        if job is None:
            self.error = "No job selected for approval"
            return []
        if not job.is_waiting or self.views.is_completed(job):
            self.error = f"Only waiting jobs can be approved (status: {job.status})"
            return []
        return self._open_confirmation(Overlay.APPROVE, job)

    def _open_confirmation(self, kind: Overlay, job: JobRecord) -> List[Command]:
        if self.views.action_in_flight(job.key):
            self.error = "An action is already in progress for this job"
            return []
        self.views.show_confirmation(kind, job)
        return []

    def select_confirmation(self, selection: int) -> List[Command]:
        self.views.select(selection)
        return []

    def dismiss_confirmation(self) -> List[Command]:
        self.views.hide_confirmation()
        return []

    def submit_confirmation(self) -> List[Command]:
        target = self.views.confirmation
        if target is None or not target.confirmed:
            self.views.hide_confirmation()
            return []
        return self.confirm_action()

    def confirm_action(self) -> List[Command]:
        """Dispatch the confirmed action. The prompt closes as soon as the call is on its way."""
        target = self.views.confirmation
        self.views.hide_confirmation()
        if target is None:
            return []
        if not self.views.begin_action(target.job.key):
            self.error = "An action is already in progress for this job"
            return []
        self.error = ""
        if target.kind == Overlay.APPROVE:
            return [self.commands.approve(target.job)]
        return [self.commands.cancel_run(target.job)]
