"""
Configuration management for local history stores.

The configuration is stored as a TOML file in the store directory.
It holds the retention and merge settings (optionally scoped to
resources by glob pattern) and the optional remote endpoint that can
designate a different history root.
"""

import fnmatch
import os
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

# tomli_w for writing TOML (tomllib is read-only)
import tomli_w


CONFIG_FILENAME = "localhistory.toml"
CONFIG_VERSION = 1
HISTORY_DIRNAME = "History"


class Settings:
    """Setting keys understood by ``HistoryConfig.get_number``."""
    MAX_ENTRIES = "max_file_entries"
    MERGE_PERIOD = "merge_period"


DEFAULT_SETTINGS: dict[str, float] = {
    Settings.MAX_ENTRIES: 50,
    Settings.MERGE_PERIOD: 10,
}


@dataclass
class ScopedOverride:
    """Setting values that apply to resources matching ``pattern``."""
    pattern: str
    values: dict[str, float] = field(default_factory=dict)

    def matches(self, resource: Path) -> bool:
        path = str(resource)
        return (
            fnmatch.fnmatch(path, self.pattern)
            or fnmatch.fnmatch(Path(resource).name, self.pattern)
        )


@dataclass
class RemoteConfig:
    """Remote endpoint that may designate the history root."""
    api_url: str
    api_key: str = ""


@dataclass
class HistoryConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    settings: dict[str, float] = field(default_factory=dict)
    overrides: list[ScopedOverride] = field(default_factory=list)
    remote: Optional[RemoteConfig] = None

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def history_home(self) -> Path:
        """Local history root inside the store directory."""
        return self.path / HISTORY_DIRNAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()

    def get_number(self, key: str, resource: Optional[Path] = None) -> float:
        """
        Look up a numeric setting, scoped to a resource.

        The first override whose pattern matches ``resource`` wins, then the
        store-wide value, then the built-in default. Negative values are
        treated as 0.

        Raises:
            KeyError: If ``key`` is not a known setting
        """
        if key not in DEFAULT_SETTINGS:
            raise KeyError(f"Unknown setting: {key}")

        value: Any = None
        if resource is not None:
            for override in self.overrides:
                if key in override.values and override.matches(resource):
                    value = override.values[key]
                    break
        if value is None:
            value = self.settings.get(key, DEFAULT_SETTINGS[key])
        return max(value, 0)


def get_default_store_path() -> Path:
    """Store directory from LOCALHISTORY_STORE_PATH, else ~/.localhistory."""
    env_path = os.environ.get("LOCALHISTORY_STORE_PATH")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return Path.home() / ".localhistory"


def _remote_from_env(remote: Optional[RemoteConfig]) -> Optional[RemoteConfig]:
    """Apply LOCALHISTORY_REMOTE_URL / LOCALHISTORY_REMOTE_KEY on top of TOML."""
    api_url = os.environ.get("LOCALHISTORY_REMOTE_URL")
    api_key = os.environ.get("LOCALHISTORY_REMOTE_KEY")
    if api_url:
        return RemoteConfig(api_url=api_url, api_key=api_key or (remote.api_key if remote else ""))
    if remote and api_key:
        return RemoteConfig(api_url=remote.api_url, api_key=api_key)
    return remote


def _parse_number(section: str, key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"[{section}] {key} must be a number, got {value!r}")
    return value


def load_config(store_path: Path) -> HistoryConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    # Validate version
    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    history = data.get("history", {})
    settings = {
        k: _parse_number("history", k, v)
        for k, v in history.items()
        if k in DEFAULT_SETTINGS
    }

    overrides = []
    for section in history.get("overrides", []):
        pattern = section.get("pattern")
        if not pattern:
            raise ValueError("[[history.overrides]] entries need a pattern")
        overrides.append(ScopedOverride(
            pattern=pattern,
            values={
                k: _parse_number("history.overrides", k, v)
                for k, v in section.items()
                if k in DEFAULT_SETTINGS
            },
        ))

    remote = None
    remote_section = data.get("remote")
    if remote_section and remote_section.get("api_url"):
        remote = RemoteConfig(
            api_url=remote_section["api_url"],
            api_key=remote_section.get("api_key", ""),
        )

    return HistoryConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        settings=settings,
        overrides=overrides,
        remote=_remote_from_env(remote),
    )


def save_config(config: HistoryConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist. Environment overrides of the
    remote section are not written back.
    """
    # Ensure directory exists
    config.path.mkdir(parents=True, exist_ok=True)

    history: dict[str, Any] = {**DEFAULT_SETTINGS, **config.settings}
    if config.overrides:
        history["overrides"] = [
            {"pattern": o.pattern, **o.values} for o in config.overrides
        ]

    data: dict[str, Any] = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
        "history": history,
    }
    if config.remote and not os.environ.get("LOCALHISTORY_REMOTE_URL"):
        data["remote"] = {"api_url": config.remote.api_url}
        if config.remote.api_key and not os.environ.get("LOCALHISTORY_REMOTE_KEY"):
            data["remote"]["api_key"] = config.remote.api_key

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> HistoryConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = HistoryConfig(path=store_path, remote=_remote_from_env(None))
        save_config(config)
        return config
