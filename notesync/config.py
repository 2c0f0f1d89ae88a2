"""Configuration loading for notesync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class NodeConfig:
    name: str = "notesync-device"


@dataclass
class StorageConfig:
    """Configuration for the local note database."""

    db_path: str = "~/.notesync/notes.db"


@dataclass
class SyncConfig:
    """Configuration for remote synchronization."""

    enabled: bool = True
    remote_url: str = ""  # Empty means local-only
    sync_interval_seconds: int = 300
    debounce_seconds: float = 5.0
    batch_size: int = 100
    max_retries: int = 3
    timeout: float = 30.0


@dataclass
class CryptoConfig:
    """Configuration for at-rest encryption of local data."""

    local_data_key: str | None = None  # 64 hex characters
    notes_enabled: bool = False
    files_enabled: bool = False


@dataclass
class DashboardConfig:
    host: str = "127.0.0.1"
    port: int = 8080


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    crypto: CryptoConfig = field(default_factory=CryptoConfig)
    dashboard: DashboardConfig = field(default_factory=DashboardConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with NOTESYNC_ prefix."""
    return os.environ.get(f"NOTESYNC_{key}", default)


def _parse_bool(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    # Node overrides
    if name := _get_env("NODE_NAME"):
        config.node.name = name

    # Storage overrides
    if db_path := _get_env("DB_PATH"):
        config.storage.db_path = db_path

    # Sync overrides
    if sync_enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _parse_bool(sync_enabled)
    if remote_url := _get_env("SYNC_REMOTE_URL"):
        config.sync.remote_url = remote_url
    if sync_interval := _get_env("SYNC_INTERVAL"):
        config.sync.sync_interval_seconds = int(sync_interval)
    if debounce := _get_env("SYNC_DEBOUNCE"):
        config.sync.debounce_seconds = float(debounce)

    # Crypto overrides
    if key := _get_env("LOCAL_DATA_KEY"):
        config.crypto.local_data_key = key
    if notes_enabled := _get_env("ENCRYPT_NOTES"):
        config.crypto.notes_enabled = _parse_bool(notes_enabled)
    if files_enabled := _get_env("ENCRYPT_FILES"):
        config.crypto.files_enabled = _parse_bool(files_enabled)

    # Dashboard overrides
    if host := _get_env("DASHBOARD_HOST"):
        config.dashboard.host = host
    if port := _get_env("DASHBOARD_PORT"):
        config.dashboard.port = int(port)

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

            # Parse node config
            if "node" in data:
                config.node = NodeConfig(
                    name=data["node"].get("name", config.node.name)
                )

            # Parse storage config
            if "storage" in data:
                config.storage = StorageConfig(
                    db_path=data["storage"].get("db_path", config.storage.db_path)
                )

            # Parse sync config
            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    remote_url=sync_data.get("remote_url", config.sync.remote_url),
                    sync_interval_seconds=sync_data.get(
                        "sync_interval_seconds", config.sync.sync_interval_seconds
                    ),
                    debounce_seconds=sync_data.get(
                        "debounce_seconds", config.sync.debounce_seconds
                    ),
                    batch_size=sync_data.get("batch_size", config.sync.batch_size),
                    max_retries=sync_data.get("max_retries", config.sync.max_retries),
                    timeout=sync_data.get("timeout", config.sync.timeout),
                )

            # Parse crypto config
            if "crypto" in data:
                crypto_data = data["crypto"]
                config.crypto = CryptoConfig(
                    local_data_key=crypto_data.get("local_data_key"),
                    notes_enabled=crypto_data.get(
                        "notes_enabled", config.crypto.notes_enabled
                    ),
                    files_enabled=crypto_data.get(
                        "files_enabled", config.crypto.files_enabled
                    ),
                )

            # Parse dashboard config
            if "dashboard" in data:
                dash_data = data["dashboard"]
                config.dashboard = DashboardConfig(
                    host=dash_data.get("host", config.dashboard.host),
                    port=dash_data.get("port", config.dashboard.port),
                )

    # Apply environment variable overrides
    return _apply_env_overrides(config)
