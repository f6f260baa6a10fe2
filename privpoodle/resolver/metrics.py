# ================================================================
# File     : resolver/metrics.py
# Purpose  : Run-level counters for a role membership resolution
# Notes    : Purely observational; updated from worker threads
# ================================================================

import threading
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

COUNTERS = (
    "directRolesProcessed",
    "pimRolesProcessed",
    "groupsExpanded",
    "totalMembers",
    "processingErrors",
)


class RunMetrics:
    """Lock-protected counters plus start/end timing for one run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._counts = {name: 0 for name in COUNTERS}
        self.start_time: Optional[datetime] = None
        self.end_time: Optional[datetime] = None
        self.cancelled = False
        self.role_counts: Dict[str, Dict[str, int]] = {}
        self._t0: Optional[float] = None
        self._t1: Optional[float] = None

    def start(self) -> None:
        with self._lock:
            self.start_time = datetime.now(timezone.utc)
            self._t0 = time.monotonic()

    def finish(self) -> None:
        with self._lock:
            if self.end_time is not None:
                return
            self.end_time = datetime.now(timezone.utc)
            self._t1 = time.monotonic()

    def increment(self, name: str, amount: int = 1) -> None:
        if name not in self._counts:
            raise KeyError(f"Unknown metric '{name}'")
        with self._lock:
            self._counts[name] += amount

    def get(self, name: str) -> int:
        with self._lock:
            return self._counts[name]

    def mark_cancelled(self) -> None:
        with self._lock:
            self.cancelled = True

    @property
    def elapsed_seconds(self) -> float:
        with self._lock:
            if self._t0 is None:
                return 0.0
            end = self._t1 if self._t1 is not None else time.monotonic()
            return round(end - self._t0, 3)

    # Attribute-style access for the counters (metrics.processingErrors)
    def __getattr__(self, name: str):
        counts = self.__dict__.get("_counts")
        if counts is not None and name in counts:
            return self.get(name)
        raise AttributeError(name)

    def as_dict(self) -> Dict[str, Any]:
        elapsed = self.elapsed_seconds
        with self._lock:
            out: Dict[str, Any] = {
                "startTime": self.start_time.isoformat() if self.start_time else None,
                "endTime": self.end_time.isoformat() if self.end_time else None,
                "elapsedSeconds": elapsed,
                "cancelled": self.cancelled,
            }
            out.update(self._counts)
            out["roleCounts"] = {k: dict(v) for k, v in self.role_counts.items()}
        return out
