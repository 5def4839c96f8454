"""Configuration loading for nestsync."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml


@dataclass
class DeviceConfig:
    id: str = ""  # generated and persisted on first run when empty
    name: str = "nestsync-device"


@dataclass
class RelayConfig:
    api_base: str = ""
    ws_base: str = ""


@dataclass
class SyncConfig:
    """Configuration for the sync engine."""

    enabled: bool = True
    max_retries: int = 3
    retry_delay_seconds: float = 1.0
    reconnect_delay_seconds: float = 3.0
    debounce_seconds: float = 2.0
    request_timeout_seconds: float = 10.0


@dataclass
class StorageConfig:
    db_path: str = "~/.nestsync/state.db"  # empty keeps state in memory only


@dataclass
class ConnectivityConfig:
    """Configuration for the HTTP reachability probe."""

    probe_enabled: bool = False
    probe_url: str = ""  # defaults to relay.api_base
    probe_interval_seconds: float = 15.0


@dataclass
class Config:
    device: DeviceConfig = field(default_factory=DeviceConfig)
    relay: RelayConfig = field(default_factory=RelayConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    connectivity: ConnectivityConfig = field(default_factory=ConnectivityConfig)


def _get_env(key: str, default: Any = None) -> Any:
    """Get environment variable with NESTSYNC_ prefix."""
    return os.environ.get(f"NESTSYNC_{key}", default)


def _is_true(value: str) -> bool:
    return value.lower() in ("true", "1", "yes")


def _apply_env_overrides(config: Config) -> Config:
    """Apply environment variable overrides to config."""
    if device_id := _get_env("DEVICE_ID"):
        config.device.id = device_id
    if name := _get_env("DEVICE_NAME"):
        config.device.name = name

    # Relay overrides
    if api_base := _get_env("API_BASE"):
        config.relay.api_base = api_base
    if ws_base := _get_env("WS_BASE"):
        config.relay.ws_base = ws_base

    # Sync overrides
    if enabled := _get_env("SYNC_ENABLED"):
        config.sync.enabled = _is_true(enabled)
    if max_retries := _get_env("SYNC_MAX_RETRIES"):
        config.sync.max_retries = int(max_retries)
    if retry_delay := _get_env("SYNC_RETRY_DELAY"):
        config.sync.retry_delay_seconds = float(retry_delay)
    if reconnect_delay := _get_env("SYNC_RECONNECT_DELAY"):
        config.sync.reconnect_delay_seconds = float(reconnect_delay)
    if debounce := _get_env("SYNC_DEBOUNCE"):
        config.sync.debounce_seconds = float(debounce)

    # Storage overrides; an explicitly empty value selects in-memory storage
    db_path = _get_env("DB_PATH")
    if db_path is not None:
        config.storage.db_path = db_path

    if probe := _get_env("PROBE_ENABLED"):
        config.connectivity.probe_enabled = _is_true(probe)
    if probe_url := _get_env("PROBE_URL"):
        config.connectivity.probe_url = probe_url

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

            if "device" in data:
                device_data = data["device"]
                config.device = DeviceConfig(
                    id=device_data.get("id", config.device.id) or "",
                    name=device_data.get("name", config.device.name),
                )

            if "relay" in data:
                relay_data = data["relay"]
                config.relay = RelayConfig(
                    api_base=relay_data.get("api_base", config.relay.api_base),
                    ws_base=relay_data.get("ws_base", config.relay.ws_base),
                )

            if "sync" in data:
                sync_data = data["sync"]
                config.sync = SyncConfig(
                    enabled=sync_data.get("enabled", config.sync.enabled),
                    max_retries=sync_data.get("max_retries", config.sync.max_retries),
                    retry_delay_seconds=sync_data.get(
                        "retry_delay_seconds", config.sync.retry_delay_seconds
                    ),
                    reconnect_delay_seconds=sync_data.get(
                        "reconnect_delay_seconds", config.sync.reconnect_delay_seconds
                    ),
                    debounce_seconds=sync_data.get(
                        "debounce_seconds", config.sync.debounce_seconds
                    ),
                    request_timeout_seconds=sync_data.get(
                        "request_timeout_seconds", config.sync.request_timeout_seconds
                    ),
                )

            if "storage" in data:
                config.storage = StorageConfig(
                    db_path=data["storage"].get("db_path", config.storage.db_path) or "",
                )

            if "connectivity" in data:
                conn_data = data["connectivity"]
                config.connectivity = ConnectivityConfig(
                    probe_enabled=conn_data.get(
                        "probe_enabled", config.connectivity.probe_enabled
                    ),
                    probe_url=conn_data.get("probe_url", config.connectivity.probe_url),
                    probe_interval_seconds=conn_data.get(
                        "probe_interval_seconds",
                        config.connectivity.probe_interval_seconds,
                    ),
                )

    config = _apply_env_overrides(config)

    if not config.connectivity.probe_url:
        config.connectivity.probe_url = config.relay.api_base

    return config
