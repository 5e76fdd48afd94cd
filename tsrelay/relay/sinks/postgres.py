"""Sink de almacenamiento que escribe registros consolidados en PostgreSQL."""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional, Sequence

import psycopg2
from psycopg2 import sql
from psycopg2.extensions import parse_dsn
from psycopg2.extras import Json

from tsrelay.config.schema import StorageSettings

from ..errors import RelayStartupError
from ..pivot import ConsolidatedRecord
from .base import RecordSink

logger = logging.getLogger(__name__)

INSERT_SQL = """
    INSERT INTO {table}
        ( time, host, metrics )
    VALUES
        ( 'epoch'::timestamptz + %s * '1 second'::interval, %s, %s )
"""

STORAGE_ERRORS = (psycopg2.Error, OSError)

Connector = Callable[[str], Any]


def build_insert_sql(table: str) -> sql.Composed:
    """Compose the INSERT statement, quoting ``table`` or ``schema.table``."""

    return sql.SQL(INSERT_SQL).format(table=sql.Identifier(*table.split(".")))


def describe_destination(dbopts: str) -> str:
    """Render ``user@host:port/dbname`` from a libpq string, without secrets."""

    try:
        params = parse_dsn(dbopts)
    except psycopg2.ProgrammingError:
        return "<dbopts inválido>"
    user = params.get("user")
    host = params.get("host", "localhost")
    port = params.get("port", "5432")
    dbname = params.get("dbname", user or "postgres")
    prefix = f"{user}@" if user else ""
    return f"{prefix}{host}:{port}/{dbname}"


def check_storage(settings: StorageSettings, *, connect: Connector = psycopg2.connect) -> None:
    """Open and close a connection to confirm the backend is reachable."""

    destination = describe_destination(settings.dbopts)
    try:
        conn = connect(settings.dbopts)
    except STORAGE_ERRORS as exc:
        raise RelayStartupError(f"No se pudo conectar a la base de datos {destination}: {exc}") from exc
    conn.close()
    logger.info("Successfully tested connection to the backend database (%s).", destination)


class PostgresSink(RecordSink):
    """Escribe cada lote en una única transacción.

    With ``persistent=False`` a fresh connection is opened for every batch
    and closed afterwards whatever the outcome. With ``persistent=True`` the
    connection is opened on the first non-empty batch and reused until
    :meth:`close`; a connection that failed is dropped and reopened on the
    next batch.
    """

    def __init__(
        self,
        settings: StorageSettings,
        *,
        persistent: bool = False,
        connect: Connector = psycopg2.connect,
    ) -> None:
        self.settings = settings
        self.persistent = persistent
        self.destination = describe_destination(settings.dbopts)
        self._connect = connect
        self._insert = build_insert_sql(settings.table)
        self._conn: Optional[Any] = None

    # Implementación del protocolo RecordSink ---------------------------------
    def open(self) -> None:
        # La conexión se abre al escribir el primer lote no vacío.
        return None

    def write_records(self, records: Sequence[ConsolidatedRecord]) -> bool:
        if not records:
            return True

        try:
            conn = self._acquire()
        except STORAGE_ERRORS as exc:
            logger.error(
                "No se pudo conectar a %s; se descartan %d registro(s): %s",
                self.destination,
                len(records),
                exc,
                extra={"event": "batch_failed", "destination": self.destination},
            )
            return False

        try:
            with conn.cursor() as cur:
                for record in records:
                    cur.execute(self._insert, (record.timestamp, record.host, Json(record.metrics)))
            conn.commit()
        except STORAGE_ERRORS as exc:
            self._rollback(conn)
            logger.error(
                "Error al escribir %d registro(s) en %s (tabla %s): %s: %s",
                len(records),
                self.destination,
                self.settings.table,
                type(exc).__name__,
                exc,
                extra={"event": "batch_failed", "destination": self.destination},
            )
            if self.persistent:
                self._release()
            return False
        finally:
            if not self.persistent:
                self._close_quietly(conn)
        return True

    def close(self) -> None:
        self._release()

    # Métodos internos --------------------------------------------------------
    def _acquire(self) -> Any:
        if self.persistent and self._conn is not None and not self._conn.closed:
            return self._conn
        conn = self._connect(self.settings.dbopts)
        if self.persistent:
            self._conn = conn
        return conn

    def _release(self) -> None:
        conn, self._conn = self._conn, None
        if conn is not None:
            self._close_quietly(conn)

    @staticmethod
    def _rollback(conn: Any) -> None:
        try:
            conn.rollback()
        except STORAGE_ERRORS as exc:
            logger.debug("Rollback fallido (conexión perdida): %s", exc)

    @staticmethod
    def _close_quietly(conn: Any) -> None:
        try:
            conn.close()
        except STORAGE_ERRORS as exc:
            logger.debug("Error al cerrar la conexión: %s", exc)
