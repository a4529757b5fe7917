"""
cocd CLI

Runs the approval dashboard, or prints one snapshot of waiting or recent
workflow runs with ``--once``.
"""

import json
import os
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from rich.console import Console

from cocd import __version__
from cocd.config import Config, config_paths, load_config, write_skeleton_config
from cocd.errors import CocdError, ConfigError
from cocd.github.client import GitHubClient
from cocd.logging import (
    EXIT_CONFIG_ERROR,
    EXIT_OK,
    EXIT_RUNTIME_ERROR,
    get_logger,
    init_cli_logging,
    init_tui_logging,
    log_extra,
)
from cocd.monitor.monitor import Monitor
from cocd.monitor.progress import ScanMode, utc_now
from cocd.scanner.models import JobRecord

logger = get_logger(__name__)

UI_FIELDS = ("is_newly_scanned", "highlight_until")


def job_payload(job: JobRecord) -> Dict[str, Any]:
    data = asdict(job)
    for key in UI_FIELDS:
        data.pop(key, None)
    for key in ("started_at", "completed_at"):
        if data[key] is not None:
            data[key] = data[key].isoformat()
    return data


def print_snapshot(jobs: List[JobRecord], view: str, json_output: bool, console: Console) -> None:
    if json_output:
        click.echo(json.dumps([job_payload(job) for job in jobs], indent=2))
        return
    if not jobs:
        console.print("[yellow]No jobs found[/yellow]")
        return
    from cocd.tui.render import job_table

    title = f"Approval Waiting Jobs [{len(jobs)}]" if view == "pending" else f"Recent Jobs [{len(jobs)}]"
    console.print(job_table(jobs, utc_now(), title=title))


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option("--config", "config_path", type=click.Path(dir_okay=False, path_type=Path), help="Config file path")
@click.option("--token", help="GitHub token")
@click.option("--base-url", help="GitHub API base URL (GHES: https://host/api/v3)")
@click.option("--org", help="GitHub organization")
@click.option("--repo", help="Monitor a single repository")
@click.option("--interval", type=int, help="Full scan interval in seconds")
@click.option("--timezone", help="Time zone used in approval comments")
@click.option("--once", is_flag=True, help="Print one snapshot and exit")
@click.option("--view", type=click.Choice(["pending", "recent"]), default="pending", show_default=True)
@click.option("--json", "json_output", is_flag=True, help="Output the snapshot as JSON")
@click.option("--init-config", is_flag=True, help="Write a skeleton config file and exit")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.version_option(__version__, prog_name="cocd")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[Path],
    token: Optional[str],
    base_url: Optional[str],
    org: Optional[str],
    repo: Optional[str],
    interval: Optional[int],
    timezone: Optional[str],
    once: bool,
    view: str,
    json_output: bool,
    init_config: bool,
    verbose: bool,
) -> None:
    """cocd - watch GitHub Actions runs waiting for approval."""
    ctx.ensure_object(dict)

    if init_config:
        target = write_skeleton_config(config_path or config_paths()[0])
        click.echo(f"Config file: {target}")
        return

    overrides = {
        "token": token,
        "base_url": base_url,
        "org": org,
        "repo": repo,
        "interval": interval,
        "timezone": timezone,
        "version": __version__,
    }
    try:
        config = load_config(config_path, overrides=overrides)
    except ConfigError as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_CONFIG_ERROR)

    level = "DEBUG" if verbose else config.log_level
    if once:
        init_cli_logging(level, json_output=config.log_json)
        ctx.exit(run_once(config, view, json_output, ctx.obj.get("transport")))

    if not (sys.stdin.isatty() and sys.stdout.isatty()) and os.environ.get("FORCE_TTY") != "1":
        click.echo("Warning: cocd works best in an interactive terminal (set FORCE_TTY=1 to silence).", err=True)
    init_tui_logging(level, json_output=config.log_json, log_file=config.log_file)
    logger.info("dashboard_start", extra=log_extra(view="recent"))
    from cocd.tui.app import run_dashboard

    try:
        run_dashboard(config)
    except CocdError as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_RUNTIME_ERROR)


def run_once(config: Config, view: str, json_output: bool, transport: Any = None) -> int:
    client = GitHubClient(token=config.token, org=config.org or "", base_url=config.base_url, transport=transport)
    monitor = Monitor(client, interval=config.interval, repo=config.repo)
    mode = ScanMode.FULL if view == "pending" else ScanMode.TARGETED
    try:
        jobs = monitor.fetch(mode=mode)
    except CocdError as exc:
        logger.error("snapshot_failed", extra=log_extra(view=view, error=str(exc), error_category=exc.category))
        click.echo(f"Error: {exc}", err=True)
        return EXIT_RUNTIME_ERROR
    finally:
        client.close()
    print_snapshot(jobs, view, json_output, Console())
    return EXIT_OK


def main() -> None:
    cli(obj={})


if __name__ == "__main__":
    main()
