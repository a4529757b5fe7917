"""Pure rendering of dashboard state into rich renderables."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Iterable, List, Optional

from rich.align import Align
from rich.console import Group, RenderableType
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from cocd.config import Config
from cocd.monitor.progress import ScanProgress
from cocd.scanner.models import JobRecord
from cocd.tui.commands import approval_message
from cocd.tui.keys import Mode
from cocd.tui.view_manager import ConfirmationTarget, Overlay, View, ViewManager

if TYPE_CHECKING:
    from cocd.tui.model import Dashboard

STATUS_STYLES = {
    "waiting": "yellow",
    "in_progress": "blue",
    "completed": "green",
    "success": "green",
    "failure": "red",
    "cancelled": "bright_black",
}

KEY_HINTS = "Keys: [t]oggle view [r]efresh [a]pprove [c]ancel [o]pen browser [h]elp [q]uit [↑↓] navigate"
CONFIRM_HINTS = "Use ←/→ to select, Enter to confirm, Esc to cancel"

HELP_TEXT = """CoCD - GitHub Actions Monitor

KEY BINDINGS:
  q, Ctrl+C    Quit
  t            Toggle between Approval Waiting Jobs and Recent Jobs
  r            Refresh current view
  a            Approve selected deployment (with confirmation)
  c            Cancel selected workflow (with confirmation)
  h, ?         Toggle this help
  ↑/↓, k/j     Navigate jobs (k=up, j=down)
  ←/→          Navigate pages (Recent Jobs only)
  o            Open GitHub Actions page in browser

SCAN SETTINGS:
SETTING              FULL SCAN              RECENT JOBS
Interval             {interval:<22} 30 sec when stale
Target Repos         Top 200 (7d)           Top 100 active
Workers              2 concurrent           2 concurrent
Timeout              60 seconds             90 seconds
API Filter           status="waiting"       All runs
Cache                Repo list (60m)        Repo list (60m)

Press any key to continue..."""


def format_age(started_at: Optional[datetime], now: datetime) -> str:
    if started_at is None:
        return "N/A"
    seconds = max(0, int((now - started_at).total_seconds()))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    if seconds < 86400:
        return f"{seconds // 3600}h"
    return f"{seconds // 86400}d"


def title_text(version: str) -> str:
    if version and version != "dev":
        return f"CoCD v{version}"
    return "CoCD dev"


def connection_status(loading: bool, error: str) -> Text:
    if loading:
        return Text("Connecting", style="yellow")
    if error:
        return Text("Error", style="red")
    return Text("Connected", style="green")


def scan_info(progress: ScanProgress) -> Text:
    if progress.total_repos <= 0:
        return Text(f"Mode: Idle | Cache: {progress.cache_status}", style="cyan")
    repos = f"Repos: {progress.completed_repos}/{progress.target_repos}"
    if progress.archived_repos:
        repos += f" ({progress.archived_repos} archived)"
    return Text(f"Mode: {progress.scan_mode.value} | {repos} | Cache: {progress.cache_status}", style="cyan")


def timer_info(progress: ScanProgress, view: View, recent_countdown: int) -> Text:
    if progress.is_scanning:
        return Text(f"Scanning... ({progress.state_duration}s)", style="yellow")
    if view == View.RECENT:
        return Text(f"Next Fast scan in {recent_countdown}s", style="yellow")
    if progress.next_scan_at is None:
        return Text("Waiting for first full scan", style="yellow")
    return Text(f"Next Full scan in {progress.scan_countdown}s", style="yellow")


def header(dashboard: "Dashboard", now: datetime) -> RenderableType:
    config: Config = dashboard.config
    progress = dashboard.progress
    line = Text.assemble(
        (title_text(config.version), "bold blue"),
        "  ",
        f"Mem: {progress.memory_usage}  ",
        f"Server: {config.server_label}  ",
        f"Org: {config.scope_label}  ",
        f"User: {dashboard.identity}  ",
        "Status: ",
        connection_status(dashboard.loading, dashboard.error),
    )
    recent_countdown = dashboard.next_recent_scan_in(now)
    return Group(
        line,
        scan_info(progress),
        timer_info(progress, dashboard.views.current_view, recent_countdown),
        Text(KEY_HINTS, style="bright_black"),
    )


def view_selector(views: ViewManager, pending_count: int, recent_count: int) -> Text:
    active, inactive = "bold blue", "bright_black"
    pending_style = active if views.current_view == View.PENDING else inactive
    recent_style = active if views.current_view == View.RECENT else inactive
    return Text.assemble(
        (f"Approval Waiting Jobs [{pending_count}]", pending_style),
        "  ",
        (f"Recent Jobs [{recent_count}]", recent_style),
    )


def job_table(
    jobs: Iterable[JobRecord],
    now: datetime,
    cursor: Optional[int] = None,
    views: Optional[ViewManager] = None,
    title: Optional[str] = None,
) -> Table:
    """
    Job rows with the row style picked by priority: cursor, then newly seen,
    then locally completed; otherwise only the STATUS cell is colored.
    """
    table = Table(title=title, box=None, header_style="bold", expand=False, pad_edge=False)
    table.add_column("REPOSITORY", max_width=30, min_width=12, no_wrap=True, overflow="ellipsis")
    table.add_column("JOB NAME", max_width=50, min_width=20, no_wrap=True, overflow="ellipsis")
    table.add_column("RNO", max_width=10, min_width=4, no_wrap=True)
    table.add_column("STATUS", max_width=15, min_width=10, no_wrap=True)
    table.add_column("BRANCH", max_width=25, min_width=10, no_wrap=True, overflow="ellipsis")
    table.add_column("ACTOR", max_width=20, min_width=10, no_wrap=True, overflow="ellipsis")
    table.add_column("AGE", no_wrap=True)
    for i, job in enumerate(jobs):
        status = Text(job.status, style=STATUS_STYLES.get(job.status, ""))
        row_style = ""
        if cursor is not None and i == cursor:
            row_style = "white on blue"
        elif views is not None and views.is_highlighted(job, now):
            row_style = "black on green"
        elif views is not None and views.is_completed(job):
            row_style = "bright_black"
            status = Text(job.status)
        table.add_row(
            job.repository,
            job.name,
            f"#{job.run_number}",
            status,
            job.branch,
            job.actor,
            format_age(job.started_at, now),
            style=row_style,
        )
    return table


def pagination(views: ViewManager) -> Optional[Text]:
    pages = views.page_count()
    if views.current_view != View.RECENT or pages <= 1:
        return None
    dots = Text()
    for page in range(pages):
        dots.append("●", style="blue" if page == views.page else "bright_black")
    return dots


def status_line(error: str) -> Text:
    if error:
        return Text(f"Error: {error}", style="red")
    return Text("")


def help_screen(interval: int) -> RenderableType:
    body = HELP_TEXT.format(interval=f"{interval} sec (auto)")
    return Panel(Text(body), border_style="blue", padding=(2, 4), expand=False)


def _buttons(selection: int) -> Text:
    no_style = "bold white on green" if selection == 0 else "white"
    yes_style = "bold white on red" if selection == 1 else "white"
    return Text.assemble(("  No  ", no_style), "    ", ("  Yes  ", yes_style))


def confirm_dialog(target: ConfirmationTarget, timezone: str, now: datetime) -> RenderableType:
    job = target.job
    if target.kind == Overlay.APPROVE:
        title = Text("⚠️  Confirm Deployment Approval", style="bold green")
        info = Text(f"Repository: {job.repository}\nWorkflow: {job.workflow_name}\nStatus: {job.status}")
        warning = Text("This will approve the deployment to production!", style="yellow")
        message = approval_message(timezone, now)
        extra: List[RenderableType] = [Text(f"Message: {message}", style="cyan on bright_black")]
        border = "green"
    else:
        title = Text("⚠️  Confirm Cancel Workflow", style="bold white")
        info = Text(
            f"Repository: {job.repository}\nWorkflow: {job.workflow_name}\nRun #{job.run_number}\nActor: {job.actor}"
        )
        warning = Text("This action cannot be undone!", style="italic bright_yellow")
        extra = []
        border = "bright_black"
    parts: List[RenderableType] = [title, Text(""), info, Text(""), warning, Text("")]
    for item in extra:
        parts.extend([item, Text("")])
    parts.extend([_buttons(target.selection), Text(""), Text(CONFIRM_HINTS, style="bright_black")])
    return Align.center(Panel(Group(*[Align.center(part) for part in parts]), border_style=border, width=72))


def render(dashboard: "Dashboard", now: datetime) -> RenderableType:
    mode = dashboard.mode
    if mode == Mode.HELP:
        return help_screen(dashboard.monitor.update_interval)
    if mode in (Mode.APPROVE_CONFIRM, Mode.CANCEL_CONFIRM) and dashboard.views.confirmation is not None:
        return confirm_dialog(dashboard.views.confirmation, dashboard.config.timezone, now)

    views = dashboard.views
    jobs = views.visible_jobs(now)
    pending_count = len(views.combined_pending(now))
    parts: List[RenderableType] = [
        header(dashboard, now),
        Text(""),
        view_selector(views, pending_count, len(views.recent)),
        Text(""),
        job_table(jobs, now, cursor=views.cursor, views=views),
    ]
    if not jobs:
        parts.append(Text("No jobs found", style="italic bright_black"))
    dots = pagination(views)
    if dots is not None:
        parts.append(dots)
    parts.append(status_line(dashboard.error))
    return Group(*parts)


