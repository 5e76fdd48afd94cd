"""Tests for inactivity-based framing of the Netdata stream."""

from __future__ import annotations

import socket
import threading
import time

import pytest

from tsrelay.relay.framer import LineReader, StreamFramer, read_batch

TIMEOUT_S = 0.1


@pytest.fixture()
def sockets():
    server_side, client_side = socket.socketpair()
    yield server_side, client_side
    for sock in (server_side, client_side):
        try:
            sock.close()
        except OSError:
            pass


def send_later(sock: socket.socket, *chunks):
    """Send each ``(pause, data)`` chunk from a background thread."""

    def _run():
        for pause, data in chunks:
            time.sleep(pause)
            sock.sendall(data)

    thread = threading.Thread(target=_run, daemon=True)
    thread.start()
    return thread


def test_lines_inside_the_window_join_one_batch(sockets):
    server_side, client_side = sockets
    framer = StreamFramer(LineReader(server_side, TIMEOUT_S))
    send_later(client_side, (0.0, b'{"a":1}\n'), (0.02, b'{"b":2}\n'), (0.02, b'{"c":3}\n'))

    assert framer.read_batch() == '{"a":1}\n{"b":2}\n{"c":3}\n'
    assert framer.closed is False


def test_gap_longer_than_timeout_starts_a_new_batch(sockets):
    server_side, client_side = sockets
    framer = StreamFramer(LineReader(server_side, TIMEOUT_S))
    send_later(client_side, (0.0, b"first\n"), (0.4, b"second\n"))

    assert framer.read_batch() == "first\n"
    assert framer.read_batch() == "second\n"


def test_silence_never_produces_an_empty_batch(sockets):
    server_side, _client_side = sockets
    stop = threading.Event()
    framer = StreamFramer(LineReader(server_side, TIMEOUT_S), stop_event=stop)
    threading.Timer(0.35, stop.set).start()

    started = time.monotonic()
    result = framer.read_batch()

    assert result is None
    assert time.monotonic() - started >= 0.3
    assert framer.closed is True


def test_peer_close_flushes_buffered_batch_then_signals_closure(sockets):
    server_side, client_side = sockets
    framer = StreamFramer(LineReader(server_side, 5.0))
    client_side.sendall(b"one\ntwo\n")
    client_side.close()

    assert framer.read_batch() == "one\ntwo\n"
    assert framer.closed is True
    assert framer.read_batch() is None


def test_peer_close_without_data(sockets):
    server_side, client_side = sockets
    framer = StreamFramer(LineReader(server_side, TIMEOUT_S))
    client_side.close()

    assert framer.read_batch() is None
    assert framer.closed is True


def test_unterminated_fragment_is_delivered_on_close(sockets):
    server_side, client_side = sockets
    framer = StreamFramer(LineReader(server_side, 5.0))
    client_side.sendall(b"full\npartial")
    client_side.close()

    assert framer.read_batch() == "full\npartial\n"


def test_partial_line_survives_a_timeout(sockets):
    server_side, client_side = sockets
    framer = StreamFramer(LineReader(server_side, TIMEOUT_S))
    send_later(client_side, (0.0, b'{"value":'), (0.3, b"1}\n"))

    assert framer.read_batch() == '{"value":1}\n'


def test_read_error_returns_buffered_lines():
    class FailingReader:
        def __init__(self):
            self.calls = 0

        def readline(self):
            self.calls += 1
            if self.calls == 1:
                return b"kept\n"
            raise ConnectionResetError("reset by peer")

    framer = StreamFramer(FailingReader(), peer="10.0.0.1:5000")  # type: ignore[arg-type]

    assert framer.read_batch() == "kept\n"
    assert framer.closed is True
    assert framer.read_batch() is None


def test_invalid_utf8_is_replaced(sockets):
    server_side, client_side = sockets
    client_side.sendall(b"caf\xe9\n")

    assert read_batch(server_side, 100) == "caf�\n"


def test_line_reader_raises_timeout_without_complete_line(sockets):
    server_side, client_side = sockets
    reader = LineReader(server_side, TIMEOUT_S)
    client_side.sendall(b"abc")

    with pytest.raises(socket.timeout):
        reader.readline()
    assert reader.pending == 3
