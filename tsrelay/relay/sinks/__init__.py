"""Registro de sinks disponibles y utilidades de construcción."""

from __future__ import annotations

from tsrelay.config.schema import RelayConfig

from .base import RecordSink
from .postgres import PostgresSink, build_insert_sql, check_storage, describe_destination

__all__ = [
    "RecordSink",
    "PostgresSink",
    "build_insert_sql",
    "build_sink",
    "check_storage",
    "describe_destination",
]


def build_sink(config: RelayConfig) -> RecordSink:
    """Crea el sink de una conexión según la política de ciclo de vida."""

    return PostgresSink(config.storage, persistent=config.persistent)
