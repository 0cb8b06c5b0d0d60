"""Runtime configuration for the task bridge."""

from __future__ import annotations

import os
import shlex
import tomllib
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from task_bridge.bridge.models import ProjectConfig
from task_bridge.storage.common import is_sqlite_url

ENV_PREFIX = "TASK_BRIDGE"


class ConfigError(ValueError):
    """Required startup configuration is missing or invalid."""


@dataclass(slots=True)
class StoreSettings:
    """Task store endpoint and credential."""

    url: str = ""
    key: str | None = None
    busy_timeout_ms: int = 5_000


@dataclass(slots=True)
class PollingSettings:
    """Dispatcher tick settings."""

    interval_ms: int = 10_000


@dataclass(slots=True)
class AgentSettings:
    """Agent subprocess settings."""

    command: tuple[str, ...] = ("claude",)
    timeout_ms: int = 300_000
    kill_grace_seconds: float = 2.0


@dataclass(slots=True)
class Settings:
    """Application settings grouped by concern."""

    store: StoreSettings = field(default_factory=StoreSettings)
    polling: PollingSettings = field(default_factory=PollingSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    projects: dict[str, ProjectConfig] = field(default_factory=dict)
    projects_file: Path | None = None

    @classmethod
    def from_env(cls) -> Settings:
        """Load settings from environment with defaults for local development."""

        projects_file_raw = os.getenv(_k("PROJECTS_FILE"), "").strip()
        projects_file = Path(projects_file_raw).expanduser() if projects_file_raw else None
        return cls(
            store=StoreSettings(
                url=os.getenv(_k("STORE_URL"), "").strip(),
                key=os.getenv(_k("STORE_KEY")) or None,
                busy_timeout_ms=_env_int(_k("STORE_BUSY_TIMEOUT_MS"), 5_000),
            ),
            polling=PollingSettings(
                interval_ms=_env_int(_k("POLL_INTERVAL_MS"), 10_000),
            ),
            agent=AgentSettings(
                command=_env_command(_k("AGENT_COMMAND"), ("claude",)),
                timeout_ms=_env_int(_k("AGENT_TIMEOUT_MS"), 300_000),
                kill_grace_seconds=_env_float(_k("AGENT_KILL_GRACE_SECONDS"), 2.0),
            ),
            projects=load_projects(projects_file) if projects_file is not None else {},
            projects_file=projects_file,
        )

    def validate(self) -> None:
        """Raise ``ConfigError`` if the bridge cannot start with these settings."""

        if not self.store.url:
            raise ConfigError(f"{_k('STORE_URL')} is required.")
        try:
            url = make_url(self.store.url)
        except ArgumentError as error:
            raise ConfigError(f"Invalid {_k('STORE_URL')}: {error}") from error
        if not is_sqlite_url(url) and not (self.store.key or url.password):
            raise ConfigError(f"{_k('STORE_KEY')} is required for {url.get_backend_name()} stores.")
        if self.polling.interval_ms <= 0:
            raise ConfigError(f"{_k('POLL_INTERVAL_MS')} must be > 0.")
        if self.agent.timeout_ms <= 0:
            raise ConfigError(f"{_k('AGENT_TIMEOUT_MS')} must be > 0.")
        if not self.agent.command:
            raise ConfigError(f"{_k('AGENT_COMMAND')} must not be empty.")

    def store_url(self) -> URL:
        """Store URL with the credential applied as password."""

        url = make_url(self.store.url)
        if self.store.key and not url.password:
            return url.set(password=self.store.key)
        return url

    @property
    def poll_interval_seconds(self) -> float:
        return self.polling.interval_ms / 1000.0

    @property
    def agent_timeout_seconds(self) -> float:
        return self.agent.timeout_ms / 1000.0


def load_projects(path: Path) -> dict[str, ProjectConfig]:
    """Parse the ``[projects.<tag>]`` tables of a TOML mapping file."""

    try:
        with path.open("rb") as handle:
            raw = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as error:
        raise ConfigError(f"Cannot read projects file {str(path)!r}: {error}") from error

    projects = raw.get("projects", {})
    if not isinstance(projects, dict):
        raise ConfigError(f"Projects file {str(path)!r}: [projects] must be a table.")

    mapping: dict[str, ProjectConfig] = {}
    for tag, entry in projects.items():
        if not isinstance(entry, dict) or not str(entry.get("repo_path", "")).strip():
            raise ConfigError(f"Projects file {str(path)!r}: project {tag!r} needs a repo_path.")
        mapping[tag] = ProjectConfig(
            repo_path=str(Path(str(entry["repo_path"])).expanduser()),
            test_command=str(entry.get("test_command", "npm test")),
            stack=str(entry.get("stack", "Unknown")),
        )
    return mapping


def _k(suffix: str) -> str:
    return f"{ENV_PREFIX}_{suffix}"


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError as error:
        raise ConfigError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError as error:
        raise ConfigError(f"Invalid number value for {name}: {raw!r}") from error


def _env_command(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return tuple(shlex.split(raw))
