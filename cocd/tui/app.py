from __future__ import annotations

import threading
from functools import partial
from typing import Any, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.message import Message
from textual.widgets import Static

from cocd.config import Config
from cocd.github.client import GitHubClient
from cocd.logging import get_logger, log_extra
from cocd.monitor.monitor import Monitor
from cocd.tui.commands import Command, CommandHandler
from cocd.tui.keys import Mode
from cocd.tui.messages import ErrorOccurred, KeyPressed, Resized
from cocd.tui.model import Dashboard
from cocd.tui.render import render

log = get_logger("cocd.tui")


class Inbox(Message):
    """Carries a dashboard message from any thread into the app's queue."""

    def __init__(self, payload: Any) -> None:
        super().__init__()
        self.payload = payload


def _binding(keys: str, name: str) -> Binding:
    return Binding(keys, f"press('{name}')", name, show=False, priority=True)


class CocdApp(App):
    CSS = """
    Screen { layout: vertical; }
    #dashboard { height: 1fr; padding: 0 1; }
    """

    BINDINGS = [
        _binding("q", "q"),
        _binding("ctrl+c", "ctrl+c"),
        _binding("h", "h"),
        _binding("question_mark", "?"),
        _binding("t", "t"),
        _binding("r", "r"),
        _binding("a", "a"),
        _binding("c", "c"),
        _binding("o", "o"),
        _binding("up", "up"),
        _binding("k", "k"),
        _binding("down", "down"),
        _binding("j", "j"),
        _binding("left", "left"),
        _binding("right", "right"),
        _binding("enter", "enter"),
        _binding("escape", "esc"),
        _binding("y", "y"),
        _binding("Y,shift+y", "Y"),
        _binding("n", "n"),
        _binding("N,shift+n", "N"),
    ]
    TITLE = "CoCD"
    BOUND_KEYS = frozenset(key.strip() for binding in BINDINGS for key in binding.key.split(","))

    def __init__(
        self,
        config: Config,
        client: GitHubClient,
        monitor: Monitor,
        cancel: Optional[threading.Event] = None,
    ) -> None:
        super().__init__()
        self.config = config
        self.client = client
        self.cancel = cancel or threading.Event()
        self.commands = CommandHandler(monitor, client, config, self.post_inbox, self.cancel)
        self.dashboard = Dashboard(config, monitor, self.commands)

    def compose(self) -> ComposeResult:
        yield Static("Loading...", id="dashboard")

    def on_mount(self) -> None:
        log.info("tui_start", extra=log_extra(view=self.dashboard.views.current_view.value))
        for command in self.dashboard.init():
            self.execute(command)
        self.redraw_dashboard()

    def on_unmount(self) -> None:
        self.cancel.set()

    def post_inbox(self, payload: Any) -> None:
        self.post_message(Inbox(payload))

    def on_inbox(self, message: Inbox) -> None:
        self.deliver(message.payload)

    def action_press(self, key: str) -> None:
        self.deliver(KeyPressed(key))

    def on_key(self, event: events.Key) -> None:
        # Help closes on any key; bound keys already arrive through action_press.
        if self.dashboard.mode == Mode.HELP and event.key not in self.BOUND_KEYS:
            event.stop()
            self.deliver(KeyPressed(event.key))

    def on_resize(self, event: events.Resize) -> None:
        self.deliver(Resized(event.size.width, event.size.height))

    def deliver(self, message: Any) -> None:
        for command in self.dashboard.update(message):
            self.execute(command)
        if self.dashboard.quitting:
            self.cancel.set()
            self.exit()
            return
        self.redraw_dashboard()

    def execute(self, command: Command) -> None:
        if command.delay:
            self.set_timer(command.delay, partial(self._complete, command))
            return
        self.run_worker(
            partial(self._run_blocking, command),
            name=command.name,
            group="commands",
            thread=True,
            exit_on_error=False,
        )

    def _complete(self, command: Command) -> None:
        result = command.run()
        if result is not None:
            self.deliver(result)

    def _run_blocking(self, command: Command) -> None:
        try:
            result = command.run()
        except Exception as exc:
            log.exception("command_failed", extra=log_extra(error=str(exc), error_type=type(exc).__name__))
            result = ErrorOccurred(f"{command.name} failed: {exc}")
        if result is not None and not self.cancel.is_set():
            self.post_inbox(result)

    def redraw_dashboard(self) -> None:
        for widget in self.query("#dashboard").results(Static):
            widget.update(render(self.dashboard, self.dashboard.clock()))


def run_dashboard(config: Config) -> None:
    """Build the client and monitor for ``config`` and run the dashboard until quit."""
    client = GitHubClient(token=config.token, org=config.org or "", base_url=config.base_url)
    monitor = Monitor(client, interval=config.interval, repo=config.repo)
    cancel = threading.Event()
    app = CocdApp(config, client, monitor, cancel)
    try:
        app.run()
    finally:
        cancel.set()
        client.close()
        log.info("tui_stop")
