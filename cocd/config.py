import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from cocd.errors import ConfigError

DEFAULT_BASE_URL = "https://api.github.com"

SKELETON_HEADER = """# cocd configuration file
#
# Environment variables (COCD_GITHUB_TOKEN, COCD_GITHUB_ORG, COCD_MONITOR_INTERVAL, ...)
# and command line flags override the values below.

"""


class Config(BaseModel):
    """
    Pydantic-backed configuration merged from a YAML file, environment variables
    and command line overrides.

    Key env vars:
    - COCD_CONFIG (explicit config file path)
    - COCD_GITHUB_TOKEN, falling back to GITHUB_TOKEN and then `gh auth token`
    - COCD_GITHUB_BASE_URL (default: https://api.github.com; GHES: https://host/api/v3)
    - COCD_GITHUB_ORG (required)
    - COCD_GITHUB_REPO (optional; monitor a single repository)
    - COCD_MONITOR_INTERVAL (full sweep period in seconds, default: 60)
    - COCD_MONITOR_TIMEZONE (default: UTC; used in approval comments)
    - COCD_LOG_LEVEL / COCD_LOG_FILE / COCD_LOG_JSON
    """

    token: Optional[str] = Field(default=None, repr=False)
    base_url: str = Field(default=DEFAULT_BASE_URL)
    org: Optional[str] = Field(default=None)
    repo: Optional[str] = Field(default=None)
    interval: int = Field(default=60, ge=1)
    timezone: str = Field(default="UTC")
    log_level: str = Field(default="INFO")
    log_file: Optional[Path] = Field(default=None)
    log_json: bool = Field(default=False)
    version: str = Field(default="dev")

    model_config = ConfigDict(arbitrary_types_allowed=True)

    @field_validator("base_url")
    @classmethod
    def _normalize_base_url(cls, value: str) -> str:
        value = (value or "").strip().rstrip("/")
        if not value:
            return DEFAULT_BASE_URL
        if not value.startswith(("http://", "https://")):
            value = "https://" + value
        return value

    @property
    def server_label(self) -> str:
        if self.base_url == DEFAULT_BASE_URL:
            return "GitHub.com"
        return self.base_url.split("://", 1)[-1].removesuffix("/api/v3")

    @property
    def scope_label(self) -> str:
        if self.repo:
            return f"{self.org}/{self.repo}"
        return self.org or "-"


def config_paths() -> List[Path]:
    """Candidate config files in priority order."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    config_dir = Path(xdg) / "cocd" if xdg else Path.home() / ".config" / "cocd"
    return [
        config_dir / "config.yaml",
        Path.home() / ".cocd" / "config.yaml",
        Path("/etc/cocd/config.yaml"),
    ]


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"error reading config file {path}: {exc}", metadata={"path": str(path)}) from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a mapping", metadata={"path": str(path)})
    github = data.get("github") or {}
    monitor = data.get("monitor") or {}
    for section, value in (("github", github), ("monitor", monitor)):
        if not isinstance(value, dict):
            raise ConfigError(f"section '{section}' in {path} must be a mapping", metadata={"path": str(path)})
    values: Dict[str, Any] = {}
    for key in ("token", "base_url", "org", "repo"):
        if github.get(key):
            values[key] = github[key]
    for key in ("interval", "timezone"):
        if monitor.get(key):
            values[key] = monitor[key]
    return values


def _read_env() -> Dict[str, Any]:
    mapping = {
        "token": "COCD_GITHUB_TOKEN",
        "base_url": "COCD_GITHUB_BASE_URL",
        "org": "COCD_GITHUB_ORG",
        "repo": "COCD_GITHUB_REPO",
        "interval": "COCD_MONITOR_INTERVAL",
        "timezone": "COCD_MONITOR_TIMEZONE",
        "log_level": "COCD_LOG_LEVEL",
        "log_file": "COCD_LOG_FILE",
    }
    values: Dict[str, Any] = {key: os.environ[env] for key, env in mapping.items() if os.environ.get(env)}
    if os.environ.get("COCD_LOG_JSON"):
        values["log_json"] = os.environ["COCD_LOG_JSON"].lower() in ("1", "true", "yes", "on")
    return values


def gh_cli_token() -> Optional[str]:
    """Token of the GitHub CLI session, if `gh` is installed and logged in."""
    if shutil.which("gh") is None:
        return None
    try:
        proc = subprocess.run(["gh", "auth", "token"], capture_output=True, text=True, check=True, timeout=10)
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired, OSError):
        return None
    return proc.stdout.strip() or None


def load_config(
    path: Optional[Path] = None,
    overrides: Optional[Dict[str, Any]] = None,
    token_fallback: Optional[Callable[[], Optional[str]]] = None,
) -> Config:
    """
    Load configuration: defaults < YAML file < COCD_* env vars < overrides.
    """
    values: Dict[str, Any] = {}
    explicit = path or (Path(os.environ["COCD_CONFIG"]) if os.environ.get("COCD_CONFIG") else None)
    if explicit is not None:
        explicit = Path(explicit).expanduser()
        if not explicit.exists():
            raise ConfigError(f"config file not found: {explicit}", metadata={"path": str(explicit)})
        values.update(_read_yaml(explicit))
    else:
        found = next((candidate for candidate in config_paths() if candidate.exists()), None)
        if found is not None:
            values.update(_read_yaml(found))
    values.update(_read_env())
    values.update({k: v for k, v in (overrides or {}).items() if v not in (None, "")})

    if not values.get("token"):
        values["token"] = os.environ.get("GITHUB_TOKEN") or (token_fallback or gh_cli_token)()

    try:
        config = Config(**values)
    except ValidationError as exc:
        raise ConfigError(f"invalid configuration: {exc}") from exc

    if not config.org:
        raise ConfigError("GitHub organization is required (set github.org, COCD_GITHUB_ORG or --org)")
    if not config.token:
        raise ConfigError(
            "GitHub token is required. Set GITHUB_TOKEN or COCD_GITHUB_TOKEN, or login with 'gh auth login'"
        )
    return config


def write_skeleton_config(path: Path) -> Path:
    """Write a commented default config file; an existing file is left untouched."""
    path = Path(path).expanduser()
    if path.exists():
        return path
    path.parent.mkdir(parents=True, exist_ok=True)
    skeleton = {
        "github": {"token": "", "base_url": "api.github.com", "org": "", "repo": ""},
        "monitor": {"interval": 60, "timezone": "UTC"},
    }
    path.write_text(SKELETON_HEADER + yaml.safe_dump(skeleton, sort_keys=False), encoding="utf-8")
    return path
