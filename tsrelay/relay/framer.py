"""Delimitación de lotes sobre un flujo TCP sin separadores explícitos.

El backend JSON de Netdata no envía longitud ni marca de fin de muestra: se
lee línea a línea y un silencio de ``timeout`` indica que el lote terminó.
"""

from __future__ import annotations

import logging
import socket
import threading
from typing import List, Optional

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 65536


class LineReader:
    """Buffered newline reader over a socket with a per-read timeout."""

    def __init__(self, sock: socket.socket, timeout_s: float, *, chunk_size: int = DEFAULT_CHUNK_SIZE) -> None:
        self._sock = sock
        self._sock.settimeout(timeout_s)
        self._buffer = bytearray()
        self._chunk_size = chunk_size
        self._eof = False

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def readline(self) -> Optional[bytes]:
        """Return the next line including ``\\n``, or ``None`` at end of stream.

        Raises ``socket.timeout`` when no complete line arrived in time; the
        partial bytes received so far stay buffered for the next call. A
        trailing fragment without newline is returned once the peer closes.
        """

        while True:
            idx = self._buffer.find(b"\n")
            if idx >= 0:
                line = bytes(self._buffer[: idx + 1])
                del self._buffer[: idx + 1]
                return line
            if self._eof:
                if self._buffer:
                    line = bytes(self._buffer) + b"\n"
                    self._buffer.clear()
                    return line
                return None
            chunk = self._sock.recv(self._chunk_size)
            if not chunk:
                self._eof = True
                continue
            self._buffer.extend(chunk)


class StreamFramer:
    """Agrupa líneas en lotes usando la inactividad como delimitador."""

    def __init__(
        self,
        reader: LineReader,
        *,
        peer: str = "?",
        stop_event: Optional[threading.Event] = None,
    ) -> None:
        self._reader = reader
        self._peer = peer
        self._stop_event = stop_event
        self.closed = False

    def read_batch(self) -> Optional[str]:
        """Block until a batch is complete.

        Returns the batch text, or ``None`` once the connection is closed and
        nothing is left to deliver. Pure silence never yields an empty batch.
        """

        if self.closed:
            return None

        lines: List[str] = []
        while True:
            try:
                raw = self._reader.readline()
            except socket.timeout:
                if lines:
                    return "".join(lines)
                if self._stop_event is not None and self._stop_event.is_set():
                    self.closed = True
                    return None
                continue
            except OSError as exc:
                logger.warning("Error de lectura desde %s: %s", self._peer, exc)
                self.closed = True
                return "".join(lines) or None

            if raw is None:
                self.closed = True
                return "".join(lines) or None
            lines.append(raw.decode("utf-8", errors="replace"))


def read_batch(sock: socket.socket, timeout_ms: int) -> Optional[str]:
    """One-shot helper: read a single batch from ``sock``.

    A partial line still buffered when the batch ends is discarded with the
    reader, so use a :class:`StreamFramer` to read several batches from one
    socket.
    """

    framer = StreamFramer(LineReader(sock, timeout_ms / 1000.0))
    return framer.read_batch()
