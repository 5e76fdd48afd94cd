"""Ciclo de vida de una conexión de Netdata: leer, pivotar, escribir."""

from __future__ import annotations

import logging
import socket
import threading
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional

from tsrelay.config.schema import RelayConfig

from .framer import LineReader, StreamFramer
from .metrics import RelayMetrics
from .pivot import pivot_with_stats
from .sinks import RecordSink, build_sink

logger = logging.getLogger(__name__)

SinkFactory = Callable[[RelayConfig], RecordSink]


class WorkerState(str, Enum):
    ACCEPTED = "accepted"
    READING = "reading"
    WRITING = "writing"
    CLOSED = "closed"


def format_peer(address: Any) -> str:
    if isinstance(address, tuple) and len(address) >= 2:
        host, port = address[0], address[1]
        if ":" in str(host):
            return f"[{host}]:{port}"
        return f"{host}:{port}"
    return str(address)


class ConnectionWorker:
    """Own one client connection end to end.

    ``dropconn`` closes the socket as soon as a batch has been read, before
    it is written, and Netdata reconnects for the next sample. ``persistent``
    keeps both the socket and the storage connection across batches until
    the peer hangs up. Without either flag a single batch is read and
    written, then the connection is closed.
    """

    def __init__(
        self,
        sock: socket.socket,
        address: Any,
        config: RelayConfig,
        *,
        sink_factory: SinkFactory = build_sink,
        metrics: Optional[RelayMetrics] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self.sock = sock
        self.peer = format_peer(address)
        self.config = config
        self.metrics = metrics or RelayMetrics(config.metrics_log_interval_s)
        self._sink_factory = sink_factory
        self._stop_event = stop_event
        self._socket_closed = False
        self.state = WorkerState.ACCEPTED
        self.started_at = datetime.now(timezone.utc)
        self.batches = 0
        self.records = 0

    def run(self) -> None:
        sink: Optional[RecordSink] = None
        try:
            sink = self._sink_factory(self.config)
            framer = StreamFramer(
                LineReader(self.sock, self.config.timeout_s),
                peer=self.peer,
                stop_event=self._stop_event,
            )
            sink.open()
            while True:
                self.state = WorkerState.READING
                raw = framer.read_batch()
                if raw is None:
                    break
                started = time.perf_counter()
                if self.config.dropconn:
                    self._close_socket()

                self.state = WorkerState.WRITING
                self._process(raw, sink, started)

                if not self.config.persistent or framer.closed:
                    break
        finally:
            self.state = WorkerState.CLOSED
            self._close_socket()
            if sink is not None:
                sink.close()
            self.metrics.connection_closed()
            logger.debug(
                "Conexión %s cerrada tras %d lote(s).",
                self.peer,
                self.batches,
                extra={"event": "connection_closed", "peer": self.peer},
            )

    def _process(self, raw: str, sink: RecordSink, started: float) -> None:
        result = pivot_with_stats(raw, debug=self.config.debug)
        records = result.records
        self.metrics.record_batch(len(records), result.discarded, result.desynced)

        stored = sink.write_records(records)
        self.metrics.record_storage(len(records), stored)
        self.batches += 1
        if stored:
            self.records += len(records)

        elapsed = time.perf_counter() - started
        if self.config.verbose:
            logger.info(
                "%d sample(s) parsed from %s in %.3f seconds.",
                len(records),
                self.peer,
                elapsed,
                extra={
                    "event": "batch_stored" if stored else "batch_failed",
                    "peer": self.peer,
                    "records": len(records),
                    "elapsed_s": round(elapsed, 3),
                },
            )

    def _close_socket(self) -> None:
        if self._socket_closed:
            return
        self._socket_closed = True
        try:
            self.sock.close()
        except OSError as exc:
            logger.debug("Error al cerrar el socket de %s: %s", self.peer, exc)

    def info(self) -> Dict[str, object]:
        return {
            "peer": self.peer,
            "state": self.state.value,
            "started_at": self.started_at,
            "batches": self.batches,
            "records": self.records,
        }
