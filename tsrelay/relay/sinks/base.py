"""Interfaces comunes para los sinks de almacenamiento."""

from __future__ import annotations

from typing import Protocol, Sequence, runtime_checkable

from ..pivot import ConsolidatedRecord


@runtime_checkable
class RecordSink(Protocol):
    """Contrato mínimo para los sinks de registros consolidados."""

    def open(self) -> None:
        """Inicializa recursos del sink previo a recibir datos."""

    def write_records(self, records: Sequence[ConsolidatedRecord]) -> bool:
        """Persiste un lote completo; devuelve ``False`` si el lote se descartó."""

    def close(self) -> None:
        """Libera los recursos asociados al sink."""
