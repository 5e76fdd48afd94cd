import json
import logging
import threading
import time
from typing import Dict


class RelayMetrics:
    """Thread-safe accumulator for connection, pivot and storage counters."""

    def __init__(self, log_interval_s: float = 60.0, logger: logging.Logger | None = None) -> None:
        self.log_interval_s = max(0.0, float(log_interval_s))
        self._logger = logger or logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._start_time = time.time()
        self._last_log_time = self._start_time
        self._counters = self._initial_counters()
        self._last_snapshot = self._counters.copy()

    @staticmethod
    def _initial_counters() -> Dict[str, int]:
        return {
            "connections_accepted": 0,
            "connections_closed": 0,
            "batches_read": 0,
            "lines_discarded": 0,
            "batches_desynced": 0,
            "records_pivoted": 0,
            "records_stored": 0,
            "batches_stored": 0,
            "batches_failed": 0,
        }

    def connection_opened(self) -> None:
        with self._lock:
            self._counters["connections_accepted"] += 1
        self.maybe_log()

    def connection_closed(self) -> None:
        with self._lock:
            self._counters["connections_closed"] += 1
        self.maybe_log()

    def record_batch(self, records: int, discarded: int = 0, desynced: bool = False) -> None:
        with self._lock:
            self._counters["batches_read"] += 1
            self._counters["records_pivoted"] += max(0, records)
            self._counters["lines_discarded"] += max(0, discarded)
            if desynced:
                self._counters["batches_desynced"] += 1
        self.maybe_log()

    def record_storage(self, records: int, success: bool) -> None:
        if records <= 0:
            return
        with self._lock:
            if success:
                self._counters["batches_stored"] += 1
                self._counters["records_stored"] += records
            else:
                self._counters["batches_failed"] += 1
        self.maybe_log()

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return self._counters.copy()

    def maybe_log(self, force: bool = False) -> None:
        now = time.time()
        with self._lock:
            interval = now - self._last_log_time
            if not force and self.log_interval_s > 0.0 and interval < self.log_interval_s:
                return

            payload = self._build_payload(now, interval)
            self._last_log_time = now
            self._last_snapshot = self._counters.copy()

        self._logger.info("relay_metrics %s", json.dumps(payload, sort_keys=True))

    def _build_payload(self, now: float, interval: float) -> Dict[str, object]:
        delta = {
            key: self._counters[key] - self._last_snapshot.get(key, 0)
            for key in self._counters
        }
        return {
            "type": "relay_metrics",
            "uptime_s": round(now - self._start_time, 3),
            "interval_s": round(interval, 3),
            "counters": self._counters.copy(),
            "delta": delta,
        }
