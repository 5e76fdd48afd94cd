"""Loopback tests for the connection acceptor and its supervisor."""

from __future__ import annotations

import json
import socket
import threading
import time
from typing import List

import pytest

from tsrelay.config.schema import RelayConfig
from tsrelay.relay.errors import RelayStartupError
from tsrelay.relay.server import RelayServer, run_relay


class CollectingSink:
    def __init__(self, store: List[list], lock: threading.Lock) -> None:
        self._store = store
        self._lock = lock

    def open(self) -> None:
        pass

    def write_records(self, records) -> bool:
        with self._lock:
            self._store.append(list(records))
        return True

    def close(self) -> None:
        pass


def loopback_config(**overrides) -> RelayConfig:
    payload = {
        "listen": {"address": "127.0.0.1", "port": 0},
        "timeout_ms": 100,
        "verbose": False,
        "metrics_log_interval_s": 3600,
    }
    payload.update(overrides)
    return RelayConfig.from_mapping(payload)


def wait_for(predicate, timeout: float = 3.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture()
def running_server():
    store: List[list] = []
    lock = threading.Lock()
    servers = []

    def start(**overrides):
        server = RelayServer(
            loopback_config(**overrides),
            sink_factory=lambda _config: CollectingSink(store, lock),
        )
        server.bind()
        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        servers.append((server, thread))
        return server, store

    yield start

    for server, thread in servers:
        server.shutdown(timeout=2.0)
        thread.join(3.0)


def send_lines(address, *payloads) -> socket.socket:
    client = socket.create_connection(address, timeout=2.0)
    for payload in payloads:
        client.sendall((json.dumps(payload) + "\n").encode())
    return client


def sample(timestamp: int, metric_id: str, value=1) -> dict:
    return {
        "timestamp": timestamp,
        "chart_id": "system.load",
        "id": metric_id,
        "value": value,
        "hostname": "NODE-1",
    }


def test_server_relays_a_batch_end_to_end(running_server):
    server, store = running_server()

    client = send_lines(server.address, sample(200, "load1", 0.5), sample(200, "load5", 0.75))
    try:
        assert wait_for(lambda: len(store) == 1)
        client.settimeout(2.0)
        assert client.recv(1) == b""
    finally:
        client.close()

    (record,) = store[0]
    assert record.timestamp == 200
    assert record.host == "node-1"
    assert record.metrics == {"system.load.load1": 0.5, "system.load.load5": 0.75}


def test_each_connection_gets_its_own_worker(running_server):
    server, store = running_server(persistent=True)

    first = send_lines(server.address, sample(300, "load1"))
    second = send_lines(server.address, sample(301, "load1"))
    try:
        assert wait_for(lambda: len(server.active_workers()) == 2)
        assert wait_for(lambda: len(store) == 2)
    finally:
        first.close()
        second.close()

    assert sorted(batch[0].timestamp for batch in store) == [300, 301]
    assert wait_for(lambda: server.active_workers() == [])
    assert server.metrics.snapshot()["connections_accepted"] == 2


def test_reap_forgets_finished_workers(running_server):
    server, store = running_server()

    client = send_lines(server.address, sample(400, "load1"))
    client.close()
    assert wait_for(lambda: len(store) == 1)

    def reaped():
        server.reap()
        return not server._workers

    assert wait_for(reaped)
    assert server.metrics.snapshot()["connections_closed"] == 1


def test_bind_failure_is_a_startup_error():
    occupied = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    occupied.bind(("127.0.0.1", 0))
    occupied.listen(1)
    port = occupied.getsockname()[1]
    try:
        server = RelayServer(loopback_config(listen={"address": "127.0.0.1", "port": port}))
        with pytest.raises(RelayStartupError, match=str(port)):
            server.bind()
    finally:
        occupied.close()


def test_listening_display_uses_bound_port():
    server = RelayServer(loopback_config())
    server.bind()
    try:
        host, port = server.address
        assert host == "127.0.0.1"
        assert port > 0
        assert server.listening == f"127.0.0.1:{port}"
    finally:
        server.shutdown()


class ScriptedServer:
    def __init__(self, calls: List[str]) -> None:
        self.calls = calls

    def bind(self) -> None:
        self.calls.append("bind")

    def serve_forever(self) -> None:
        self.calls.append("serve")
        raise KeyboardInterrupt

    def shutdown(self) -> None:
        self.calls.append("shutdown")


def test_run_relay_checks_storage_before_binding():
    calls: List[str] = []

    with pytest.raises(KeyboardInterrupt):
        run_relay(
            loopback_config(),
            storage_check=lambda settings: calls.append("check"),
            server=ScriptedServer(calls),
        )

    assert calls == ["check", "bind", "serve", "shutdown"]


def test_run_relay_aborts_when_storage_is_unreachable():
    calls: List[str] = []

    def refuse(settings):
        raise RelayStartupError("Failed to connect to the database")

    with pytest.raises(RelayStartupError):
        run_relay(loopback_config(), storage_check=refuse, server=ScriptedServer(calls))

    assert calls == []


def test_run_relay_can_skip_storage_check():
    calls: List[str] = []

    with pytest.raises(KeyboardInterrupt):
        run_relay(
            loopback_config(storage={"check_on_startup": False}),
            storage_check=lambda settings: calls.append("check"),
            server=ScriptedServer(calls),
        )

    assert calls == ["bind", "serve", "shutdown"]
