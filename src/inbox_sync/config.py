"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml


@dataclass
class ApiConfig:
    base_url: str = "http://localhost:5000"
    token: str | None = None
    request_timeout_seconds: float = 10.0


@dataclass
class PollingConfig:
    dialogs_interval_seconds: float = 10.0
    thread_interval_seconds: float = 10.0
    avito_page_size: int = 50
    avito_max_pages: int = 5


@dataclass
class StateConfig:
    corrections_db: Path = field(default_factory=lambda: Path.home() / "inbox-sync" / "state" / "corrections.db")
    log_dir: Path = field(default_factory=lambda: Path.home() / "inbox-sync" / "logs")


@dataclass
class Config:
    api: ApiConfig = field(default_factory=ApiConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    state: StateConfig = field(default_factory=StateConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def find_config_file() -> Path | None:
    """Return the first existing config file from the standard locations."""
    search_paths = [
        Path.cwd() / "config.yaml",
        Path.home() / ".config" / "inbox-sync" / "config.yaml",
        Path("/etc/inbox-sync/config.yaml"),
    ]
    for path in search_paths:
        if path.exists():
            return path
    return None


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file.

    Missing sections and keys fall back to defaults. The API token may be
    given as ``${ENV_VAR}``; when absent from the file, ``INBOX_SYNC_TOKEN``
    is consulted.
    """
    if config_path is None:
        config_path = find_config_file()

    if config_path is None or not config_path.exists():
        data: dict = {}
    else:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

    api_data = data.get("api", {})
    token = api_data.get("token")
    if token:
        token = expand_env_var(str(token))
    else:
        token = os.environ.get("INBOX_SYNC_TOKEN")

    api = ApiConfig(
        base_url=str(api_data.get("base_url", "http://localhost:5000")).rstrip("/"),
        token=token,
        request_timeout_seconds=float(api_data.get("request_timeout_seconds", 10.0)),
    )

    polling_data = data.get("polling", {})
    polling = PollingConfig(
        dialogs_interval_seconds=float(polling_data.get("dialogs_interval_seconds", 10.0)),
        thread_interval_seconds=float(polling_data.get("thread_interval_seconds", 10.0)),
        avito_page_size=int(polling_data.get("avito_page_size", 50)),
        avito_max_pages=int(polling_data.get("avito_max_pages", 5)),
    )

    state_data = data.get("state", {})
    state = StateConfig(
        corrections_db=expand_path(state_data.get("corrections_db", "~/inbox-sync/state/corrections.db")),
        log_dir=expand_path(state_data.get("log_dir", "~/inbox-sync/logs")),
    )

    return Config(api=api, polling=polling, state=state)
