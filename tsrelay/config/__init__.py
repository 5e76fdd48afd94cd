"""Configuration schemas and persistence helpers for the relay."""

from .schema import ListenSettings, RelayConfig, StorageSettings, WebAPISettings
from .store import (
    default_relay_config,
    load_env_file,
    load_relay_config,
    relay_config_from_env,
    relay_config_payload_from_env,
    save_relay_config,
)

__all__ = [
    "ListenSettings",
    "RelayConfig",
    "StorageSettings",
    "WebAPISettings",
    "default_relay_config",
    "load_env_file",
    "load_relay_config",
    "relay_config_from_env",
    "relay_config_payload_from_env",
    "save_relay_config",
]
