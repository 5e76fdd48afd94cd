"""Tests for loading and saving the relay configuration."""

from __future__ import annotations

import pytest

from tsrelay.config import store as config_store
from tsrelay.config import (
    RelayConfig,
    default_relay_config,
    load_env_file,
    load_relay_config,
    relay_config_from_env,
    save_relay_config,
)


def test_save_and_load_relay_config(tmp_path):
    path = tmp_path / "relay.yaml"
    config = RelayConfig.from_mapping(
        {"listen": {"port": 15000}, "storage": {"table": "hosts"}, "dropconn": True}
    )

    save_relay_config(config, path)
    loaded = load_relay_config(path)

    assert loaded == config
    assert loaded.mode == "dropconn"


def test_load_relay_config_rejects_non_mapping(tmp_path):
    path = tmp_path / "relay.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")

    with pytest.raises(ValueError, match="Expected a mapping"):
        load_relay_config(path)


def test_load_relay_config_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_relay_config(tmp_path / "missing.yaml")


def test_bundled_relay_yaml_matches_defaults():
    assert load_relay_config(config_store.CONFIG_DIR / "relay.yaml") == default_relay_config()


def test_relay_config_from_env_overrides_defaults():
    env = {
        "TSRELAY_LISTEN_PORT": "15001",
        "TSRELAY_DBTABLE": "netdata_raw",
        "TSRELAY_TIMEOUT_MS": "750",
        "TSRELAY_PERSISTENT": "true",
        "TSRELAY_VERBOSE": "no",
        "TSRELAY_WEBAPI_TOKEN": "secret",
        "UNRELATED": "ignored",
    }

    config = relay_config_from_env(env)

    assert config.listen.port == 15001
    assert config.listen.address == "0.0.0.0"
    assert config.storage.table == "netdata_raw"
    assert config.timeout_ms == 750
    assert config.persistent is True
    assert config.verbose is False
    assert config.webapi.token == "secret"


def test_relay_config_from_empty_env_is_default():
    assert relay_config_from_env({}) == default_relay_config()


def test_load_env_file(tmp_path):
    env_path = tmp_path / ".env"
    env_path.write_text("TSRELAY_DBTABLE=from_file\nTSRELAY_DEBUG=1\n", encoding="utf-8")

    values = load_env_file(env_path)

    assert values["TSRELAY_DBTABLE"] == "from_file"
    assert relay_config_from_env(values).debug is True
