from cocd.tui.model import Dashboard
from cocd.tui.view_manager import ConfirmationTarget, Overlay, View, ViewManager

__all__ = ["ConfirmationTarget", "Dashboard", "Overlay", "View", "ViewManager"]
