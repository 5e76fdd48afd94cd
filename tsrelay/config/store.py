"""Helpers to load, validate and persist relay configuration files."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import dotenv_values

from .schema import RelayConfig

CONFIG_DIR = Path(__file__).resolve().parent


def _read_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a mapping at {path}, found {type(data).__name__}")
    return data


def _write_yaml(path: Path, payload: Mapping[str, Any]):
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        yaml.safe_dump(payload, fh, sort_keys=False, allow_unicode=True)


def load_relay_config(path: Optional[Path] = None) -> RelayConfig:
    """Read and validate the relay configuration from relay.yaml."""

    cfg_path = path or CONFIG_DIR / "relay.yaml"
    raw = _read_yaml(cfg_path)
    return RelayConfig.from_mapping(raw)


def save_relay_config(config: RelayConfig, path: Optional[Path] = None):
    """Persist the relay configuration using the canonical schema."""

    cfg_path = path or CONFIG_DIR / "relay.yaml"
    _write_yaml(cfg_path, config.to_dict())


def relay_config_payload_from_env(env: Mapping[str, Any]) -> Dict[str, Any]:
    """Map ``TSRELAY_*`` variables onto the schema layout, skipping unset ones."""

    def pick(**pairs: str) -> Dict[str, Any]:
        return {key: env[name] for key, name in pairs.items() if env.get(name) not in (None, "")}

    payload: Dict[str, Any] = pick(
        timeout_ms="TSRELAY_TIMEOUT_MS",
        dropconn="TSRELAY_DROPCONN",
        persistent="TSRELAY_PERSISTENT",
        verbose="TSRELAY_VERBOSE",
        debug="TSRELAY_DEBUG",
        metrics_log_interval_s="TSRELAY_METRICS_INTERVAL_S",
    )
    listen = pick(address="TSRELAY_LISTEN_ADDR", port="TSRELAY_LISTEN_PORT")
    storage = pick(
        dbopts="TSRELAY_DBOPTS",
        table="TSRELAY_DBTABLE",
        check_on_startup="TSRELAY_CHECK_DB",
    )
    webapi = pick(
        enabled="TSRELAY_WEBAPI_ENABLED",
        host="TSRELAY_WEBAPI_HOST",
        port="TSRELAY_WEBAPI_PORT",
        token="TSRELAY_WEBAPI_TOKEN",
    )
    if listen:
        payload["listen"] = listen
    if storage:
        payload["storage"] = storage
    if webapi:
        payload["webapi"] = webapi
    return payload


def relay_config_from_env(env: Mapping[str, Any]) -> RelayConfig:
    """Create the relay configuration from environment variables."""

    return RelayConfig.from_mapping(relay_config_payload_from_env(env))


def default_relay_config() -> RelayConfig:
    """Return the configuration used when nothing else is provided."""

    return RelayConfig()


def load_env_file(path: Path) -> Mapping[str, str]:
    """Load key/value pairs from a dotenv file."""

    values = dotenv_values(str(path))
    return {k: v for k, v in values.items() if v is not None}
