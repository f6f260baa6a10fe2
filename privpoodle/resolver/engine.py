# ================================================================
# File     : resolver/engine.py
# Purpose  : Entry point for privileged role membership resolution
#            Idle -> Validating -> Resolving -> AwaitingExpansions
#                 -> Aggregating -> Done
# Notes    : Roles run one at a time; group expansions fan out on a
#            shared bounded pool and are drained once, after the
#            last role. Only ValidationError stops a run
# ================================================================

import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from privpoodle.core.config import fncValidateResolveOptions
from privpoodle.core.errors import ValidationError
from privpoodle.core.events import EventSink, fncRecordEvent
from privpoodle.core.roles import fncRoleCatalog, fncSelectRoles
from privpoodle.core.utils import fncPrintMessage
from privpoodle.resolver.aggregator import fncAggregateResults
from privpoodle.resolver.assignments import AssignmentResolver
from privpoodle.resolver.context import RunContext
from privpoodle.resolver.expander import GroupExpander
from privpoodle.resolver.metrics import RunMetrics


def fncResolvePrivilegedMembers(
    directory,
    role_catalog: Optional[Iterable[str]] = None,
    options: Optional[Dict[str, Any]] = None,
    event_sink: Optional[EventSink] = None,
    cancel_event: Optional[threading.Event] = None,
    connected: bool = True,
    now: Optional[datetime] = None,
) -> Tuple[List[Dict[str, Any]], RunMetrics]:
    """Resolve who holds the catalog's privileged roles.

    Parameters:
        directory: object with the list_roles / list_role_members /
            list_group_members / get_user_profile / get_group_details /
            list_eligible_assignments / list_active_assignments methods
        role_catalog: role display names to resolve (defaults to the
            built-in privileged role list)
        options: resolution options, see fncDefaultResolveOptions()
        event_sink: optional audit sink; failures inside it are ignored
        cancel_event: set it to stop dispatching new roles and groups
        connected: result of the caller's session/scope check
        now: reference time for daysSinceSignIn (defaults to UTC now)

    Returns:
        (records, metrics). Records are unordered. metrics.role_counts
        holds the reconciled per-role counts.

    Raises:
        ValidationError: not connected, bad options or empty catalog.
    """
    # ---- Validating ----
    if not connected:
        raise ValidationError("Directory session is not connected or lacks the required scopes")
    opts = fncValidateResolveOptions(options)
    catalog = fncRoleCatalog(role_catalog)
    if not catalog:
        raise ValidationError("Role catalog is empty; nothing to resolve")

    ctx = RunContext(opts, event_sink=event_sink, cancel_event=cancel_event, now=now)
    ctx.metrics.start()
    fncRecordEvent(event_sink, "resolution.started", {
        "roles": len(catalog),
        "assignmentTypes": opts["assignment_types"],
        "expandGroups": opts["expand_groups"],
        "maxConcurrentGroups": opts["max_concurrent_groups"],
    })

    expander = GroupExpander(directory, ctx)
    resolver = AssignmentResolver(directory, ctx, expander)

    drained = False
    try:
        # ---- Resolving ----
        roles = _list_roles(directory, ctx)
        matched, missing = fncSelectRoles(roles, catalog)
        for name in missing:
            fncPrintMessage(f"Role '{name}' not found in the directory; skipping", "warn")

        for role in matched:
            if ctx.is_cancelled():
                fncPrintMessage("Run cancelled; remaining roles were not processed", "warn")
                break
            resolver.resolve_role(role)

        # ---- AwaitingExpansions ----
        if ctx.pool.outstanding:
            fncPrintMessage(f"Waiting for {ctx.pool.outstanding} group expansion(s) to finish…", "debug")
        drained = ctx.pool.wait_idle()
        if not drained:
            fncPrintMessage("Run cancelled or timed out; returning partial results", "warn")
    finally:
        ctx.pool.shutdown(wait=drained)

    if not drained or ctx.interrupted:
        ctx.metrics.mark_cancelled()

    # ---- Aggregating ----
    rows, counts = fncAggregateResults(ctx.members.snapshot(), ctx.role_counts, opts, ctx.role_order)
    ctx.metrics.role_counts = counts
    ctx.metrics.finish()

    fncRecordEvent(event_sink, "resolution.completed", {
        "records": len(rows),
        "errors": ctx.metrics.get("processingErrors"),
        "groupsExpanded": ctx.metrics.get("groupsExpanded"),
        "cancelled": ctx.metrics.cancelled,
        "elapsedSeconds": ctx.metrics.elapsed_seconds,
    })
    return rows, ctx.metrics


def _list_roles(directory, ctx: RunContext) -> List[Dict[str, Any]]:
    try:
        return directory.list_roles() or []
    except Exception as ex:
        ctx.metrics.increment("processingErrors")
        fncPrintMessage(f"Failed to list directory roles: {ex}", "error")
        return []
