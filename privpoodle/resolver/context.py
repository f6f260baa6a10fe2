# ================================================================
# File     : resolver/context.py
# Purpose  : Per-run state for role membership resolution:
#            visited groups, collected records, per-role counters
#            and the bounded pool that runs group expansions
# Notes    : One RunContext per invocation; nothing here is shared
#            between runs
# ================================================================

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from privpoodle.core.events import EventSink
from privpoodle.core.utils import fncPrintMessage
from privpoodle.resolver.metrics import RunMetrics
from privpoodle.resolver.records import fncRecordKey, fncRecordRank


class VisitedSet:
    """Group keys already expanded in this run."""

    def __init__(self):
        self._lock = threading.Lock()
        self._seen = set()

    def add_if_absent(self, key) -> bool:
        """Atomically insert key. True if this caller inserted it."""
        with self._lock:
            if key in self._seen:
                return False
            self._seen.add(key)
            return True

    def __contains__(self, key) -> bool:
        with self._lock:
            return key in self._seen

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)


class MemberCollection:
    """Thread-safe bag of MemberRecords, unique per (role, principal, source)."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_key: Dict[Any, Dict[str, Any]] = {}

    def add(self, record: Dict[str, Any]) -> bool:
        """Store record. True only if its key was not held yet.

        When the key is already held the lower-ranked record is kept
        (Direct before Via Group, then earliest window), whichever
        thread delivered it first.
        """
        key = fncRecordKey(record)
        with self._lock:
            current = self._by_key.get(key)
            if current is None:
                self._by_key[key] = record
                return True
            if fncRecordRank(record) < fncRecordRank(current):
                self._by_key[key] = record
            return False

    def snapshot(self) -> List[Dict[str, Any]]:
        with self._lock:
            return list(self._by_key.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._by_key)


class RoleCounts:
    """Assignment-level counters for one role."""

    FIELDS = ("direct", "pimEligible", "pimActive")

    def __init__(self, role_name: str):
        self.role_name = role_name
        self._lock = threading.Lock()
        self._counts = {f: 0 for f in self.FIELDS}
        self._counts["total"] = 0

    def increment(self, field: str, amount: int = 1) -> None:
        if field not in self.FIELDS:
            raise KeyError(f"Unknown role count '{field}'")
        with self._lock:
            self._counts[field] += amount

    def reconcile(self) -> Dict[str, int]:
        with self._lock:
            self._counts["total"] = sum(self._counts[f] for f in self.FIELDS)
            return dict(self._counts)

    def as_dict(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


class ExpansionPool:
    """Bounded worker pool that tracks outstanding units transitively.

    Units may submit further units. wait_idle() returns once every
    submitted unit has finished (or been cancelled).
    """

    def __init__(self, max_workers: int, is_cancelled: Callable[[], bool],
                 on_error: Optional[Callable[[Exception], None]] = None):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="poodle-expand")
        self._cond = threading.Condition()
        self._outstanding = 0
        self._closed = False
        self._is_cancelled = is_cancelled
        self._on_error = on_error

    @property
    def outstanding(self) -> int:
        with self._cond:
            return self._outstanding

    def submit(self, fn: Callable, *args, **kwargs) -> bool:
        if self._is_cancelled():
            return False
        with self._cond:
            if self._closed:
                return False
            self._outstanding += 1
        try:
            future = self._executor.submit(self._run, fn, args, kwargs)
        except RuntimeError:
            # executor already shut down
            self._unit_done(None)
            return False
        future.add_done_callback(self._unit_done)
        return True

    def _run(self, fn, args, kwargs):
        try:
            fn(*args, **kwargs)
        except Exception as ex:
            fncPrintMessage(f"Expansion unit crashed: {ex}", "error")
            if self._on_error:
                self._on_error(ex)

    def _unit_done(self, _future) -> None:
        with self._cond:
            self._outstanding -= 1
            if self._outstanding <= 0:
                self._cond.notify_all()

    def wait_idle(self, poll: float = 0.1) -> bool:
        """Block until no units are outstanding. False if cancelled first."""
        with self._cond:
            while self._outstanding > 0:
                if self._is_cancelled():
                    return False
                self._cond.wait(timeout=poll)
            return True

    def shutdown(self, wait: bool = True) -> None:
        with self._cond:
            self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=not wait)


class RunContext:
    """Everything one resolution run owns."""

    def __init__(self, options: Dict[str, Any], event_sink: Optional[EventSink] = None,
                 cancel_event: Optional[threading.Event] = None, now: Optional[datetime] = None):
        self.options = options
        self.event_sink = event_sink
        self.cancel_event = cancel_event or threading.Event()
        self.now = now
        self.metrics = RunMetrics()
        self.visited = VisitedSet()
        self.members = MemberCollection()
        self.role_counts: Dict[str, RoleCounts] = {}
        self.role_order: List[str] = []

        timeout = options.get("timeout_seconds") or 0
        self.deadline = time.monotonic() + timeout if timeout > 0 else None
        self.timed_out = False
        # Set once a cancellation check has actually skipped work
        self.interrupted = False

        self.pool = ExpansionPool(
            max_workers=options.get("max_concurrent_groups", 4),
            is_cancelled=self.is_cancelled,
            on_error=lambda _ex: self.metrics.increment("processingErrors"),
        )

    def is_cancelled(self) -> bool:
        """Asked only where a True answer skips work; records that it did."""
        if self.cancel_event.is_set():
            self.interrupted = True
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            self.timed_out = True
            self.interrupted = True
            return True
        return False

    def counts_for(self, role_name: str) -> RoleCounts:
        if role_name not in self.role_counts:
            self.role_counts[role_name] = RoleCounts(role_name)
            self.role_order.append(role_name)
        return self.role_counts[role_name]

    def emit(self, record: Dict[str, Any]) -> bool:
        if self.members.add(record):
            self.metrics.increment("totalMembers")
            return True
        return False

    def visit_key(self, group_id: str, role_name: str, assignment_type: str):
        if self.options.get("expansion_scope") == "assignment":
            return role_name, assignment_type, group_id
        return group_id
