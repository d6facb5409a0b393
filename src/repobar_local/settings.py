"""Settings for local project scanning."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from .core import DEFAULT_FETCH_INTERVAL, DEFAULT_MAX_DEPTH, MAX_MAX_DEPTH, MIN_MAX_DEPTH
from .errors import SettingsError
from .git import DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)

CONFIG_ENV = "REPOBAR_LOCAL_CONFIG"
ROOT_ENV = "REPOBAR_LOCAL_ROOT"

_CAMEL_KEYS = {
    "rootPath": "root_path",
    "maxDepth": "max_depth",
    "autoSyncEnabled": "auto_sync_enabled",
    "fetchIntervalSeconds": "fetch_interval_seconds",
    "fetchInterval": "fetch_interval_seconds",
    "preferredLocalPathsByFullName": "preferred_local_paths_by_full_name",
    "includeOnlyRepoNames": "include_only_repo_names",
    "gitTimeoutSeconds": "git_timeout_seconds",
    "concurrencyLimit": "concurrency_limit",
    "githubHost": "github_host",
    "enterpriseHost": "enterprise_host",
}

DEFAULT_GITHUB_HOST = "https://github.com"


def expand_path(path: str) -> str:
    """Expand ~ and environment variables."""
    return os.path.expanduser(os.path.expandvars(path))


def clamp_depth(depth: int) -> int:
    return max(MIN_MAX_DEPTH, min(MAX_MAX_DEPTH, int(depth)))


@dataclass
class LocalProjectsSettings:
    """Local projects configuration, passed explicitly into each scan."""

    root_path: str | None = None
    max_depth: int = DEFAULT_MAX_DEPTH
    auto_sync_enabled: bool = True
    fetch_interval_seconds: float = DEFAULT_FETCH_INTERVAL
    preferred_local_paths_by_full_name: dict[str, str] = field(default_factory=dict)
    include_only_repo_names: list[str] | None = None
    git_timeout_seconds: float = DEFAULT_TIMEOUT
    concurrency_limit: int | None = None
    github_host: str = DEFAULT_GITHUB_HOST
    enterprise_host: str | None = None

    def __post_init__(self):
        self.max_depth = clamp_depth(self.max_depth)
        if self.fetch_interval_seconds < 0:
            raise SettingsError("fetch_interval_seconds must not be negative")
        if self.git_timeout_seconds <= 0:
            raise SettingsError("git_timeout_seconds must be positive")
        if self.concurrency_limit is not None and self.concurrency_limit < 1:
            raise SettingsError("concurrency_limit must be at least 1")
        names = self.include_only_repo_names
        if names is not None and (
            not isinstance(names, list) or not all(isinstance(n, str) for n in names)
        ):
            raise SettingsError("include_only_repo_names must be a list of repository names")

    @property
    def resolved_root(self) -> Path | None:
        if not self.root_path:
            return None
        return Path(expand_path(self.root_path))

    @property
    def clone_host(self) -> str:
        """Host that `checkout` clones from; an enterprise host wins."""
        return self.enterprise_host or self.github_host

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LocalProjectsSettings:
        """Build settings from a dict with camelCase or snake_case keys."""
        known = {f.name for f in fields(cls)}
        values: dict[str, Any] = {}
        for key, value in data.items():
            key = _CAMEL_KEYS.get(key, key)
            if key in known:
                values[key] = value
            else:
                logger.debug("Ignoring unknown settings key %r", key)
        try:
            return cls(**values)
        except (TypeError, ValueError) as e:
            raise SettingsError(f"Invalid settings: {e}") from e

    def to_dict(self) -> dict:
        return asdict(self)


def resolve_settings_file() -> Path | None:
    """Auto-resolve the settings file.

    Priority order:
    1. $REPOBAR_LOCAL_CONFIG environment variable
    2. ~/.config/repobar-local/settings.json (XDG-compliant)
    """
    env_config = os.environ.get(CONFIG_ENV)
    if env_config:
        env_path = Path(expand_path(env_config))
        if env_path.is_file():
            return env_path
        logger.warning("%s points to missing file %s", CONFIG_ENV, env_path)

    xdg_home = os.environ.get("XDG_CONFIG_HOME")
    base = Path(xdg_home) if xdg_home else Path.home() / ".config"
    xdg_path = base / "repobar-local" / "settings.json"
    if xdg_path.is_file():
        return xdg_path

    return None


def load_settings(path: Path | None = None) -> LocalProjectsSettings:
    """Load settings from path (or the resolved file), falling back to defaults.

    $REPOBAR_LOCAL_ROOT overrides the configured root path.
    """
    settings_file = path or resolve_settings_file()
    data: dict[str, Any] = {}
    if settings_file is not None:
        try:
            with open(settings_file, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError as e:
            raise SettingsError(f"Settings file not found: {settings_file}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise SettingsError(f"Cannot read settings from {settings_file}: {e}") from e
        if not isinstance(data, dict):
            raise SettingsError(f"Settings in {settings_file} must be a JSON object")
        # Nested layout: {"localProjects": {...}}
        if isinstance(data.get("localProjects"), dict):
            data = data["localProjects"]

    settings = LocalProjectsSettings.from_dict(data)
    env_root = os.environ.get(ROOT_ENV)
    if env_root:
        settings.root_path = env_root
    return settings
