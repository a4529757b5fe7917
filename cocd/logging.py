import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

STANDARD_FIELDS = ("repository", "run_id", "view")

DEFAULT_LOG_FILE = Path("~/.cache/cocd/cocd.log")


class ContextFilter(logging.Filter):
    """
    Ensure that all standard context fields exist on every log record so formatters
    can rely on them. Defaults can be overridden per-handler if needed.
    """

    def __init__(self, defaults: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.defaults = {field: "-" for field in STANDARD_FIELDS}
        if defaults:
            self.defaults.update({k: v for k, v in defaults.items() if v is not None})

    def filter(self, record: logging.LogRecord) -> bool:
        for key, default in self.defaults.items():
            if not hasattr(record, key):
                setattr(record, key, default)
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting
        data = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in STANDARD_FIELDS:
            data[field] = getattr(record, field, "-")
        for extra_key in (
            "count",
            "duration_ms",
            "delay",
            "interval",
            "environment_ids",
            "action",
            "error",
            "error_type",
            "error_category",
        ):
            if hasattr(record, extra_key):
                data[extra_key] = getattr(record, extra_key)
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data, default=str)


def setup_logging(
    level: Optional[str] = None,
    json_output: bool = False,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Install a single root handler. With ``log_file`` set, records go to that file
    so they do not tear through the full-screen dashboard.
    """
    resolved_level = level or os.environ.get("COCD_LOG_LEVEL") or "INFO"
    handler: logging.Handler
    if log_file is not None:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(path, encoding="utf-8")
    else:
        handler = logging.StreamHandler()
    handler.addFilter(ContextFilter())
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s %(levelname)s %(name)s %(message)s "
                "repo=%(repository)s run=%(run_id)s view=%(view)s"
            )
        )
    root = logging.getLogger()
    root.handlers = []
    root.setLevel(getattr(logging, str(resolved_level).upper(), logging.INFO))
    root.addHandler(handler)
    # httpx logs every request at INFO; a full sweep would flood the log.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    return logging.getLogger("cocd")


def get_logger(name: str = "cocd") -> logging.Logger:
    return logging.getLogger(name)


def init_cli_logging(level: Optional[str] = None, json_output: bool = False) -> logging.Logger:
    """
    Initialize logging for one-shot CLI output (stderr, default INFO).
    """
    return setup_logging(level or os.environ.get("COCD_LOG_LEVEL") or "INFO", json_output=json_output)


def init_tui_logging(level: Optional[str] = None, json_output: bool = False, log_file: Optional[Path] = None) -> logging.Logger:
    """
    Initialize logging while the dashboard owns the terminal.
    """
    target = log_file or Path(os.environ.get("COCD_LOG_FILE") or DEFAULT_LOG_FILE)
    return setup_logging(level, json_output=json_output, log_file=target)


def log_extra(
    *,
    repository: Optional[str] = None,
    run_id: Optional[int] = None,
    view: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    """
    Helper to build consistent extra dictionaries for structured logging. Only
    non-None values are included so defaults from ContextFilter still apply.
    """
    payload: Dict[str, Any] = {}
    if repository is not None:
        payload["repository"] = repository
    if run_id is not None:
        payload["run_id"] = run_id
    if view is not None:
        payload["view"] = view
    payload.update({k: v for k, v in extra.items() if v is not None})
    return payload


# Standard exit codes for CLIs
EXIT_OK = 0
EXIT_CONFIG_ERROR = 2
EXIT_RUNTIME_ERROR = 1
