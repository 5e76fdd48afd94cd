"""Listening socket and supervision of per-connection workers."""

from __future__ import annotations

import itertools
import logging
import socket
import threading
from typing import Callable, Dict, List, Optional, Tuple

from tsrelay.config.schema import RelayConfig, StorageSettings

from .errors import RelayStartupError
from .metrics import RelayMetrics
from .sinks import build_sink, check_storage
from .worker import ConnectionWorker, SinkFactory

logger = logging.getLogger(__name__)

ACCEPT_POLL_S = 1.0


class RelayServer:
    """Accept Netdata connections and run one worker thread per connection.

    The accept loop is strictly sequential: accept, hand the socket to a new
    thread, accept again. Finished threads are joined and forgotten by
    :meth:`reap`, which runs after every accept and on every idle poll.
    """

    def __init__(
        self,
        config: RelayConfig,
        *,
        sink_factory: SinkFactory = build_sink,
        metrics: Optional[RelayMetrics] = None,
    ) -> None:
        self.config = config
        self.metrics = metrics or RelayMetrics(config.metrics_log_interval_s)
        self._sink_factory = sink_factory
        self._listener: Optional[socket.socket] = None
        self._stop_event = threading.Event()
        self._lock = threading.Lock()
        self._workers: Dict[int, Tuple[threading.Thread, ConnectionWorker]] = {}
        self._ids = itertools.count(1)

    # ------------------------------------------------------------------
    @property
    def address(self) -> Tuple[str, int]:
        if self._listener is None:
            return self.config.listen.address, self.config.listen.port
        host, port = self._listener.getsockname()[:2]
        return host, port

    @property
    def listening(self) -> str:
        host, port = self.address
        return f"{'*' if host in ('0.0.0.0', '::') else host}:{port}"

    def bind(self) -> None:
        listen = self.config.listen
        family = socket.AF_INET6 if ":" in listen.address else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((listen.address, listen.port))
            sock.listen(listen.backlog)
        except OSError as exc:
            sock.close()
            reason = exc.strerror or str(exc)
            raise RelayStartupError(
                f"No se pudo escuchar en {listen.address}:{listen.port}: {reason}"
            ) from exc
        sock.settimeout(ACCEPT_POLL_S)
        self._listener = sock
        if self.config.verbose:
            logger.info("Listening for incoming connections on %s", self.listening)

    def serve_forever(self) -> None:
        if self._listener is None:
            self.bind()
        listener = self._listener
        while not self._stop_event.is_set():
            try:
                conn, address = listener.accept()
            except socket.timeout:
                self.reap()
                continue
            except OSError as exc:
                if self._stop_event.is_set():
                    break
                logger.error("accept() falló: %s", exc)
                self._stop_event.wait(0.1)
                continue
            self._dispatch(conn, address)
            self.reap()

    def shutdown(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        listener, self._listener = self._listener, None
        if listener is not None:
            try:
                listener.close()
            except OSError:  # pragma: no cover - cierre best effort
                pass
        with self._lock:
            threads = [thread for thread, _ in self._workers.values()]
        for thread in threads:
            thread.join(timeout)
        self.reap()
        self.metrics.maybe_log(force=True)

    # Supervisión -------------------------------------------------------
    def reap(self) -> int:
        with self._lock:
            finished = [key for key, (thread, _) in self._workers.items() if not thread.is_alive()]
            for key in finished:
                thread, _ = self._workers.pop(key)
                thread.join()
        return len(finished)

    def active_workers(self) -> List[Dict[str, object]]:
        with self._lock:
            return [worker.info() for thread, worker in self._workers.values() if thread.is_alive()]

    def _dispatch(self, conn: socket.socket, address) -> None:
        worker = ConnectionWorker(
            conn,
            address,
            self.config,
            sink_factory=self._sink_factory,
            metrics=self.metrics,
            stop_event=self._stop_event,
        )
        self.metrics.connection_opened()
        if self.config.verbose:
            logger.info(
                "Nueva conexión desde %s",
                worker.peer,
                extra={"event": "connection_opened", "peer": worker.peer},
            )
        thread = threading.Thread(target=self._run_worker, args=(worker,), name=f"tsrelay-{worker.peer}", daemon=True)
        with self._lock:
            self._workers[next(self._ids)] = (thread, worker)
            thread.start()

    @staticmethod
    def _run_worker(worker: ConnectionWorker) -> None:
        try:
            worker.run()
        except Exception:
            logger.exception("El worker de %s terminó con un error inesperado", worker.peer)


def run_relay(
    config: RelayConfig,
    *,
    storage_check: Callable[[StorageSettings], None] = check_storage,
    server: Optional[RelayServer] = None,
) -> None:
    """Check storage, bind, and serve until interrupted."""

    if config.storage.check_on_startup:
        storage_check(config.storage)

    server = server or RelayServer(config)
    server.bind()

    api = None
    if config.webapi.enabled:
        from tsrelay.webapi import start_status_api

        api = start_status_api(server, config.webapi)
    try:
        server.serve_forever()
    finally:
        server.shutdown()
        if api is not None:
            api.stop()
