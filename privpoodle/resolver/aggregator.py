# ================================================================
# File     : resolver/aggregator.py
# Purpose  : Final pass over collected MemberRecords: per-role total
#            reconciliation, the inactivity filter and optional
#            per-role "Summary" rows
# Notes    : Output order is not guaranteed; records arrive from
#            concurrent expansion workers
# ================================================================

from typing import Any, Dict, Iterable, List, Mapping, Optional

from privpoodle.core.errors import AggregationError
from privpoodle.resolver.records import (
    OBJECT_USER,
    NEVER_SIGNED_IN,
    fncSummaryRecord,
)

COUNT_FIELDS = ("direct", "pimEligible", "pimActive")


def fncReconcileCounts(role_counts: Mapping[str, Any]) -> Dict[str, Dict[str, int]]:
    """Set total = direct + pimActive + pimEligible for every role."""
    out: Dict[str, Dict[str, int]] = {}
    for role_name, counts in role_counts.items():
        raw = counts.reconcile() if hasattr(counts, "reconcile") else dict(counts)
        for f in COUNT_FIELDS:
            val = raw.get(f, 0)
            if not isinstance(val, int) or val < 0:
                raise AggregationError(f"Role '{role_name}' has an invalid {f} count: {val!r}")
        raw["total"] = sum(raw.get(f, 0) for f in COUNT_FIELDS)
        out[role_name] = {f: raw.get(f, 0) for f in COUNT_FIELDS + ("total",)}
    return out


def fncPassesInactivity(record: Dict[str, Any], threshold: int, exempt_never_signed_in: bool = False) -> bool:
    """Keep non-users, users with unknown activity, and users seen within threshold days."""
    if "objectType" not in record:
        raise AggregationError(f"Record without objectType: {record.get('objectId')!r}")
    if not threshold or threshold <= 0:
        return True
    if record["objectType"] != OBJECT_USER:
        return True

    days = record.get("daysSinceSignIn")
    if days is None:
        return True
    if isinstance(days, bool) or not isinstance(days, int):
        raise AggregationError(f"daysSinceSignIn must be an int or None; got {days!r}")
    if exempt_never_signed_in and record.get("lastSignInTime") == NEVER_SIGNED_IN:
        return True
    return days <= threshold


def fncFilterInactive(records: Iterable[Dict[str, Any]], threshold: int,
                      exempt_never_signed_in: bool = False) -> List[Dict[str, Any]]:
    return [r for r in records if fncPassesInactivity(r, threshold, exempt_never_signed_in)]


def fncBuildSummaries(counts: Dict[str, Dict[str, int]], role_order: Optional[List[str]] = None) -> List[Dict[str, Any]]:
    order = role_order or list(counts)
    return [fncSummaryRecord(name, counts[name]) for name in order if name in counts]


def fncAggregateResults(records: Iterable[Dict[str, Any]], role_counts: Mapping[str, Any],
                        options: Dict[str, Any], role_order: Optional[List[str]] = None):
    """Return (rows, reconciled per-role counts)."""
    counts = fncReconcileCounts(role_counts)
    rows = fncFilterInactive(
        records,
        options.get("days_inactive", 0),
        options.get("exempt_never_signed_in", False),
    )
    if options.get("include_summary"):
        rows.extend(fncBuildSummaries(counts, role_order))
    return rows, counts
