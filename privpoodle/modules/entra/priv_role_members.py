# ================================================================
# File     : modules/entra/priv_role_members.py
# Purpose  : Who holds the privileged Entra roles, and how:
#            direct, PIM eligible, PIM active, and via (nested)
#            groups, with sign-in age for every account
# Output   : data["members"]      -> list[dict] MemberRecords
#            data["role_counts"]  -> {role: {direct, pimEligible, pimActive, total}}
#            data["metrics"]      -> run metrics incl. processingErrors
# Notes    : Read-only. Follows the run(client, args) signature
# ================================================================

from typing import Any, Dict, List

from privpoodle.core.config import fncDefaultConfig
from privpoodle.core.events import ConsoleEventSink
from privpoodle.core.roles import fncRoleCatalog
from privpoodle.core.utils import fncPrintMessage, fncToTable, fncNewRunId, fncIsoNow
from privpoodle.handlers.graph.directory import GraphDirectory, REQUIRED_PERMS
from privpoodle.resolver.engine import fncResolvePrivilegedMembers
from privpoodle.resolver.records import OBJECT_SUMMARY, MAX_INT

MEMBER_HEADERS = ["roleName", "displayName", "userPrincipalName", "objectType",
                  "assignmentType", "assignmentPath", "lastSignInTime", "daysSinceSignIn"]
COUNT_HEADERS = ["role", "direct", "pimEligible", "pimActive", "total"]


def _as_directory(client):
    # Tests and other callers may hand over a directory directly
    if hasattr(client, "list_role_members"):
        return client
    return GraphDirectory(client)


def _console_rows(records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    rows = []
    for r in records:
        if r.get("objectType") == OBJECT_SUMMARY:
            continue
        row = {h: r.get(h) for h in MEMBER_HEADERS}
        if row["daysSinceSignIn"] == MAX_INT:
            row["daysSinceSignIn"] = "∞"
        rows.append(row)
    rows.sort(key=lambda x: (x["roleName"] or "", x["displayName"] or ""))
    return rows


def run(client, args, cfg: Dict[str, Any] = None, connected: bool = True):
    cfg = cfg or fncDefaultConfig()
    run_id = fncNewRunId("privroles")
    ts = fncIsoNow()
    fncPrintMessage(f"Running Privileged Role Members (run={run_id})", "info")
    fncPrintMessage(f"Required Graph permissions: {', '.join(REQUIRED_PERMS)}", "debug")

    catalog = fncRoleCatalog(cfg.get("privileged_roles"))
    options = dict(cfg.get("resolution") or {})
    sink = ConsoleEventSink() if getattr(args, "audit_events", False) else None

    records, metrics = fncResolvePrivilegedMembers(
        _as_directory(client),
        role_catalog=catalog,
        options=options,
        event_sink=sink,
        connected=connected,
    )
    role_counts = metrics.role_counts

    # ---------- Console Previews ----------
    rows = _console_rows(records)
    fncPrintMessage(f"Privileged role members (top 50 of {len(rows)})", "info")
    print(fncToTable(rows, headers=MEMBER_HEADERS, max_rows=50))

    count_rows = [{"role": name, **counts} for name, counts in role_counts.items()]
    if count_rows:
        fncPrintMessage("Assignments per role", "info")
        print(fncToTable(count_rows, headers=COUNT_HEADERS))

    m = metrics.as_dict()
    fncPrintMessage(
        f"Roles: {m['directRolesProcessed']} direct / {m['pimRolesProcessed']} PIM | "
        f"Groups expanded: {m['groupsExpanded']} | Members: {m['totalMembers']} | "
        f"Elapsed: {m['elapsedSeconds']}s",
        "info",
    )
    if m["cancelled"]:
        fncPrintMessage("Run was cancelled or timed out — results are partial.", "warn")
    if m["processingErrors"]:
        fncPrintMessage(
            f"{m['processingErrors']} error(s) during resolution — this list may be incomplete. "
            "Do not treat it as a full compliance record.",
            "error",
        )

    data = {
        "provider": "entra",
        "run_id": run_id,
        "timestamp": ts,
        "summary": {
            "Roles Resolved": len(role_counts),
            "Members": sum(1 for r in records if r.get("objectType") != OBJECT_SUMMARY),
            "Groups Expanded": m["groupsExpanded"],
            "Processing Errors": m["processingErrors"],
        },
        "options": options,
        "members": records,
        "role_counts": role_counts,
        "metrics": m,
    }

    fncPrintMessage("Privileged Role Members module complete.", "success")
    return data
