"""Pivot de líneas JSON por métrica a un registro consolidado por timestamp."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple

logger = logging.getLogger(__name__)

REQUIRED_FIELDS = ("timestamp", "chart_id", "id", "value", "hostname")


@dataclass
class ConsolidatedRecord:
    """All metrics reported by one host for one timestamp."""

    timestamp: int
    host: str
    metrics: Dict[str, Any] = field(default_factory=dict)

    def metrics_json(self) -> str:
        return json.dumps(self.metrics, sort_keys=True)

    def as_row(self) -> Tuple[int, str, str]:
        return self.timestamp, self.host, self.metrics_json()


@dataclass(frozen=True)
class PivotResult:
    records: List[ConsolidatedRecord]
    discarded: int = 0
    desynced: bool = False


def _is_number(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return isinstance(value, int) or math.isfinite(value)


def _reject_constant(name: str) -> Any:
    raise ValueError(f"constante no admitida en JSON: {name}")


def _extract(parsed: Mapping[str, Any]) -> Optional[Tuple[int, str, str, Any, str]]:
    if any(name not in parsed for name in REQUIRED_FIELDS):
        return None
    timestamp = parsed["timestamp"]
    chart_id = parsed["chart_id"]
    metric_id = parsed["id"]
    value = parsed["value"]
    hostname = parsed["hostname"]
    if not isinstance(timestamp, int) or isinstance(timestamp, bool):
        return None
    if not isinstance(chart_id, str) or not isinstance(metric_id, str):
        return None
    if not isinstance(hostname, str):
        return None
    if value is not None and not _is_number(value):
        return None
    return timestamp, chart_id, metric_id, value, hostname


def pivot_with_stats(raw_text: Optional[str], *, debug: bool = False) -> PivotResult:
    """Pivot ``raw_text`` and report how many lines were dropped.

    A line that is not valid JSON, or an object missing a required field, is
    skipped. A valid JSON value that is not an object means the stream lost
    its framing: pivoting stops and the records built so far are returned.
    """

    if not raw_text:
        return PivotResult(records=[])

    pivoted: MutableMapping[int, ConsolidatedRecord] = {}
    discarded = 0
    desynced = False

    # Solo "\n" separa registros; otros saltos Unicode pueden ir dentro de un string.
    for line in raw_text.split("\n"):
        sample = line.strip()
        if not sample:
            continue
        if debug:
            logger.debug("raw: %s", sample)

        try:
            parsed = json.loads(sample, parse_constant=_reject_constant)
        except ValueError as exc:
            discarded += 1
            logger.debug("No se pudo interpretar la línea (%s): %s", exc, sample, extra={"event": "line_discarded"})
            continue

        if not isinstance(parsed, dict):
            desynced = True
            logger.debug(
                "Valor JSON de tipo %s fuera de protocolo; se descarta el resto del lote.",
                type(parsed).__name__,
                extra={"event": "batch_desync"},
            )
            break

        fields = _extract(parsed)
        if fields is None:
            discarded += 1
            logger.debug("Línea sin campos requeridos: %s", sample, extra={"event": "line_discarded"})
            continue

        timestamp, chart_id, metric_id, value, hostname = fields
        record = pivoted.get(timestamp)
        if record is None:
            record = ConsolidatedRecord(timestamp=timestamp, host=hostname.lower())
            pivoted[timestamp] = record
        else:
            # Last line wins for the host of a shared timestamp.
            record.host = hostname.lower()
        record.metrics[f"{chart_id}.{metric_id}"] = value

    return PivotResult(records=list(pivoted.values()), discarded=discarded, desynced=desynced)


def pivot(raw_text: Optional[str], *, debug: bool = False) -> List[ConsolidatedRecord]:
    """Return one :class:`ConsolidatedRecord` per distinct timestamp."""

    return pivot_with_stats(raw_text, debug=debug).records
