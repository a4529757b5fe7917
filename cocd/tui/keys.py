from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, List

from cocd.tui.view_manager import Overlay, View

if TYPE_CHECKING:
    from cocd.tui.commands import Command
    from cocd.tui.model import Dashboard


class Mode(str, Enum):
    APPROVE_CONFIRM = "approve_confirm"
    CANCEL_CONFIRM = "cancel_confirm"
    HELP = "help"
    MAIN = "main"


# Textual key names to the names used by the key maps.
KEY_ALIASES = {
    "question_mark": "?",
    "escape": "esc",
    "shift+y": "Y",
    "shift+n": "N",
}

QUIT_KEYS = ("q", "ctrl+c")


def normalize_key(key: str) -> str:
    return KEY_ALIASES.get(key, key)


Handler = Callable[["Dashboard"], List["Command"]]


class KeyHandler:
    """
    Layered key dispatch. The dashboard's mode is checked once: an open
    confirmation only sees its own keys, help closes on any key, and
    everything else goes through the main map.
    """

    def __init__(self) -> None:
        self.main: Dict[str, Handler] = {
            "q": lambda d: d.quit(),
            "ctrl+c": lambda d: d.quit(),
            "h": lambda d: d.toggle_help(),
            "?": lambda d: d.toggle_help(),
            "t": lambda d: d.toggle_view(),
            "r": lambda d: d.refresh(),
            "a": lambda d: d.request_approve() if d.views.current_view == View.PENDING else [],
            "c": lambda d: d.request_cancel(),
            "up": lambda d: d.move_cursor(-1),
            "k": lambda d: d.move_cursor(-1),
            "down": lambda d: d.move_cursor(1),
            "j": lambda d: d.move_cursor(1),
            "left": lambda d: d.change_page(-1),
            "right": lambda d: d.change_page(1),
            "o": lambda d: d.open_selected(),
        }
        self.confirm: Dict[str, Handler] = {
            "left": lambda d: d.select_confirmation(0),
            "right": lambda d: d.select_confirmation(1),
            "enter": lambda d: d.submit_confirmation(),
            "esc": lambda d: d.dismiss_confirmation(),
            "y": lambda d: d.confirm_action(),
            "Y": lambda d: d.confirm_action(),
            "n": lambda d: d.dismiss_confirmation(),
            "N": lambda d: d.dismiss_confirmation(),
        }

    @staticmethod
    def mode(dashboard: "Dashboard") -> Mode:
        overlay = dashboard.views.overlay
        if overlay == Overlay.APPROVE:
            return Mode.APPROVE_CONFIRM
        if overlay == Overlay.CANCEL:
            return Mode.CANCEL_CONFIRM
        if dashboard.show_help:
            return Mode.HELP
        return Mode.MAIN

    def handle(self, dashboard: "Dashboard", key: str) -> List["Command"]:
        key = normalize_key(key)
        mode = self.mode(dashboard)
        if mode in (Mode.APPROVE_CONFIRM, Mode.CANCEL_CONFIRM):
            handler = self.confirm.get(key)
            return handler(dashboard) if handler else []
        if mode == Mode.HELP:
            if key in QUIT_KEYS:
                return dashboard.quit()
            dashboard.show_help = False
            return []
        handler = self.main.get(key)
        return handler(dashboard) if handler else []
