"""Contadores de ingesta para observabilidad (/health, logs de jobs).

Thread-safe: los adaptadores corren en worker threads.
"""

from __future__ import annotations

import threading
import time
from collections import Counter
from typing import Dict


class IngestionStats:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started_at = time.time()
        self.accepted = 0
        self.rejected = 0
        self.primary_failures = 0
        self.alerts_raised = 0
        self.fanout_failures = 0
        self.hook_failures = 0
        self.sink_failures: Counter = Counter()

    def record_accepted(self, count: int = 1) -> None:
        with self._lock:
            self.accepted += count

    def record_rejected(self) -> None:
        with self._lock:
            self.rejected += 1

    def record_primary_failure(self) -> None:
        with self._lock:
            self.primary_failures += 1

    def record_sink_failure(self, sink: str) -> None:
        with self._lock:
            self.sink_failures[sink] += 1

    def record_alerts(self, count: int) -> None:
        with self._lock:
            self.alerts_raised += count

    def record_fanout_failure(self) -> None:
        with self._lock:
            self.fanout_failures += 1

    def record_hook_failure(self) -> None:
        with self._lock:
            self.hook_failures += 1

    def to_dict(self) -> Dict[str, object]:
        with self._lock:
            return {
                "uptime_seconds": round(time.time() - self._started_at, 1),
                "accepted": self.accepted,
                "rejected": self.rejected,
                "primary_failures": self.primary_failures,
                "sink_failures": dict(self.sink_failures),
                "alerts_raised": self.alerts_raised,
                "fanout_failures": self.fanout_failures,
                "hook_failures": self.hook_failures,
            }

    def reset(self) -> None:
        with self._lock:
            self.accepted = 0
            self.rejected = 0
            self.primary_failures = 0
            self.alerts_raised = 0
            self.fanout_failures = 0
            self.hook_failures = 0
            self.sink_failures.clear()
            self._started_at = time.time()
