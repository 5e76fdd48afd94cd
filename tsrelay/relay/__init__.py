"""Ingest pipeline: framing, pivoting, storage and connection handling."""

from .errors import RelayStartupError
from .framer import LineReader, StreamFramer, read_batch
from .metrics import RelayMetrics
from .pivot import ConsolidatedRecord, PivotResult, pivot, pivot_with_stats
from .server import RelayServer, run_relay
from .worker import ConnectionWorker, WorkerState

__all__ = [
    "ConnectionWorker",
    "ConsolidatedRecord",
    "LineReader",
    "PivotResult",
    "RelayMetrics",
    "RelayServer",
    "RelayStartupError",
    "StreamFramer",
    "WorkerState",
    "pivot",
    "pivot_with_stats",
    "read_batch",
    "run_relay",
]
