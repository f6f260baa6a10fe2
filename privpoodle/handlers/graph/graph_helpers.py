# ================================================================
# File     : handlers/graph/graph_helpers.py
# Purpose  : Safer Graph helpers (handle rejected $select fields)
# Notes    : Warn instead of fail; add "Not Found" placeholders.
#            signInActivity needs AuditLog.Read.All and a P1 licence,
#            so a 403 drops it rather than losing the whole profile
# ================================================================

import re
import threading
from typing import List, Dict, Any, Optional, Tuple, Iterable

from privpoodle.core.utils import fncPrintMessage
from privpoodle.handlers.graph.client import GraphClientError

NOT_FOUND = "Not Found"


class RejectedFields:
    """Fields Graph refused, per endpoint kind. One per directory session."""

    def __init__(self):
        self._lock = threading.Lock()
        self._by_kind: Dict[str, set] = {}

    def for_kind(self, base_kind: str) -> set:
        with self._lock:
            return set(self._by_kind.get(base_kind, set()))

    def remember(self, base_kind: str, field: str) -> None:
        with self._lock:
            self._by_kind.setdefault(base_kind, set()).add(field)


def safe_select_get(client, base_endpoint: str, fields: List[str],
                    droppable_on_forbidden: Iterable[str] = (),
                    rejected: Optional[RejectedFields] = None) -> Tuple[Dict[str, Any], List[str]]:
    """
    Calls client.get with a $select list. If Graph returns 400 with
    "Could not find a property named 'X'", or 403 while a field listed
    in droppable_on_forbidden is selected, we warn, drop the field,
    retry, and set it to "Not Found" on the returned object.
    Pass the same `rejected` across calls to skip known-bad fields.
    Returns: (item, missing_fields)
    """
    if rejected is None:
        rejected = RejectedFields()
    kind = base_endpoint.split("/")[0]
    known_bad = rejected.for_kind(kind)
    skipped = [f for f in fields if f in known_bad]
    wanted = [f for f in fields if f not in skipped]

    endpoint = f"{base_endpoint}?$select={','.join(wanted)}" if wanted else base_endpoint
    try:
        item = client.get(endpoint)
    except GraphClientError as ex:
        missing = _field_to_drop(ex, wanted, droppable_on_forbidden)
        if not missing:
            raise  # different error; bubble up

        fncPrintMessage(f"Property unavailable: '{missing}' — retrying without it.", "warn")
        rejected.remember(kind, missing)
        item, more_missing = safe_select_get(client, base_endpoint, fields, droppable_on_forbidden, rejected)
        return item, sorted(set([missing] + more_missing))

    for f in wanted:
        item.setdefault(f, None)
    for f in skipped:
        item[f] = NOT_FOUND
    return item, skipped


def _field_to_drop(ex: GraphClientError, fields: List[str], droppable_on_forbidden: Iterable[str]):
    m = re.search(r"Could not find a property named '([^']+)'", str(ex))
    if m and m.group(1) in fields:
        return m.group(1)
    if getattr(ex, "status", None) == 403:
        for f in droppable_on_forbidden:
            if f in fields:
                return f
    return None
