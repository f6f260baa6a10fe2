# ================================================================
# File     : core/events.py
# Purpose  : Fire-and-forget audit event sinks
# Notes    : A sink must never break a run: fncRecordEvent eats
#            sink failures after a debug note
# ================================================================

from typing import Any, Dict, List, Optional

from privpoodle.core.utils import fncPrintMessage


class EventSink:
    """Base sink. Records nothing."""

    def record(self, event_name: str, attributes: Dict[str, Any]) -> None:
        return None


class ConsoleEventSink(EventSink):
    """Echoes audit events to the console at debug level."""

    def record(self, event_name: str, attributes: Dict[str, Any]) -> None:
        attrs = ", ".join(f"{k}={v}" for k, v in sorted((attributes or {}).items()))
        fncPrintMessage(f"[audit] {event_name} {attrs}".rstrip(), "debug")


class MemoryEventSink(EventSink):
    """Keeps events in a list. Handy for tests and JSON exports."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def record(self, event_name: str, attributes: Dict[str, Any]) -> None:
        self.events.append({"event": event_name, "attributes": dict(attributes or {})})


# ================================================================
# Function: fncRecordEvent
# Purpose : Send one event to an optional sink
# ================================================================
def fncRecordEvent(sink: Optional[EventSink], event_name: str, attributes: Dict[str, Any] = None) -> None:
    if sink is None:
        return
    try:
        sink.record(event_name, dict(attributes or {}))
    except Exception as ex:
        fncPrintMessage(f"Audit sink dropped '{event_name}': {ex}", "debug")
