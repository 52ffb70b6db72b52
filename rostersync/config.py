"""Configuration loading for rostersync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class NodeConfig:
    name: str = "rostersync-client"


@dataclass
class StoreConfig:
    """Configuration for the local durable store."""

    db_path: str = "~/.rostersync/rostersync.db"
    change_retention_days: int = 7


@dataclass
class RemoteConfig:
    base_url: str = "http://localhost:3001/api"
    timeout_seconds: float = 30.0

    @property
    def api_base(self) -> str:
        """Base URL guaranteed to end with ``/api``."""
        raw = self.base_url.rstrip("/")
        if raw.endswith("/api"):
            return raw
        return f"{raw}/api"


@dataclass
class SyncConfig:
    """Configuration for the sync scheduler."""

    enabled: bool = True
    debounce_ms: int = 500
    poll_interval_seconds: int = 30
    max_backoff_seconds: int = 3600
    health_check_interval_seconds: int = 10

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with ROSTERSYNC_ prefix."""
    return os.environ.get(f"ROSTERSYNC_{key}", default)


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    if db_path := _get_env("DB_PATH"):
        config.store.db_path = db_path

    if remote_url := _get_env("REMOTE_URL"):
        config.remote.base_url = remote_url
    if timeout := _get_env("REMOTE_TIMEOUT"):
        config.remote.timeout_seconds = float(timeout)

    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = sync_enabled.lower() in ("true", "1", "yes")
    if debounce := _get_env("SYNC_DEBOUNCE_MS"):
        config.sync.debounce_ms = int(debounce)
    if poll_interval := _get_env("SYNC_POLL_INTERVAL"):
        config.sync.poll_interval_seconds = int(poll_interval)

    return config


def load_config(config_path: str | Path | None = None) -> Config:
    """Load configuration from YAML file with environment variable overrides.

    Args:
        config_path: Path to YAML config file. If None, uses default config.

    Returns:
        Loaded Config object.
    """
    config = Config()

    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path) as f:
                data = yaml.safe_load(f) or {}

            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            if "store" in data:
                store_data = data["store"]
                config.store = StoreConfig(
                    db_path=store_data.get("db_path", config.store.db_path),
                    change_retention_days=store_data.get(
                        "change_retention_days", config.store.change_retention_days
                    ),
                )

            if "remote" in data:
                remote_data = data["remote"]
                config.remote = RemoteConfig(
                    base_url=remote_data.get("base_url", config.remote.base_url),
                    timeout_seconds=remote_data.get(
                        "timeout_seconds", config.remote.timeout_seconds
                    ),
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    debounce_ms=sync_data.get("debounce_ms", config.sync.debounce_ms),
                    poll_interval_seconds=sync_data.get(
                        "poll_interval_seconds", config.sync.poll_interval_seconds
                    ),
                    max_backoff_seconds=sync_data.get(
                        "max_backoff_seconds", config.sync.max_backoff_seconds
                    ),
                    health_check_interval_seconds=sync_data.get(
                        "health_check_interval_seconds",
                        config.sync.health_check_interval_seconds,
                    ),
                )

    return _apply_env_overrides(config)
