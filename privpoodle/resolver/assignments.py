# ================================================================
# File     : resolver/assignments.py
# Purpose  : Resolve one privileged role's direct, PIM eligible and
#            PIM active assignments into MemberRecords
# Notes    : Counts are assignment-level (one per fetched assignment),
#            not expanded-member level. A failed stream is counted
#            and logged; the other streams and roles carry on
# ================================================================

from typing import Any, Dict, List

from privpoodle.core.events import fncRecordEvent
from privpoodle.core.utils import fncPrintMessage
from privpoodle.resolver.context import RunContext
from privpoodle.resolver.expander import GroupExpander
from privpoodle.resolver.principals import (
    PRINCIPAL_USER,
    PRINCIPAL_GROUP,
    fncEmitUser,
    fncEmitGroupRow,
    fncEmitOtherRow,
)
from privpoodle.resolver.records import (
    ASSIGNMENT_DIRECT,
    ASSIGNMENT_PIM_ELIGIBLE,
    ASSIGNMENT_PIM_ACTIVE,
    PATH_DIRECT,
    fncWindow,
)


class AssignmentResolver:
    def __init__(self, directory, ctx: RunContext, expander: GroupExpander):
        self.directory = directory
        self.ctx = ctx
        self.expander = expander

    def resolve_role(self, role: Dict[str, Any]) -> bool:
        """Resolve every requested assignment stream for one role.

        Returns False if any stream failed to fetch.
        """
        ctx = self.ctx
        role_name = role.get("displayName") or role.get("id")
        counts = ctx.counts_for(role_name)
        types = ctx.options.get("assignment_types", "All")
        fncPrintMessage(f"Resolving role: {role_name}", "info")

        ok = True
        if types in ("All", "DirectOnly"):
            ok = self._resolve_direct(role, role_name) and ok
        if types in ("All", "PIMOnly"):
            ok = self._resolve_pim(role, role_name) and ok

        snapshot = counts.reconcile()
        fncPrintMessage(
            f"{role_name}: direct={snapshot['direct']} eligible={snapshot['pimEligible']} "
            f"active={snapshot['pimActive']}",
            "debug",
        )
        fncRecordEvent(ctx.event_sink, "resolution.role_processed" if ok else "resolution.role_failed",
                       {"role": role_name, **snapshot})
        return ok

    # ---------- direct ----------

    def _resolve_direct(self, role: Dict[str, Any], role_name: str) -> bool:
        ctx = self.ctx
        try:
            principals = self.directory.list_role_members(role.get("id")) or []
        except Exception as ex:
            ctx.metrics.increment("processingErrors")
            fncPrintMessage(f"Failed to fetch direct members of {role_name}: {ex}", "warn")
            return False

        ctx.counts_for(role_name).increment("direct", len(principals))
        ctx.metrics.increment("directRolesProcessed")

        for p in principals:
            if ctx.is_cancelled():
                break
            self._handle_principal(p.get("id"), p.get("type"), role_name, ASSIGNMENT_DIRECT, None,
                                   display_name=p.get("displayName"))
        return True

    # ---------- PIM ----------

    def _resolve_pim(self, role: Dict[str, Any], role_name: str) -> bool:
        ctx = self.ctx
        definition_id = role.get("templateId") or role.get("id")
        streams = (
            (ASSIGNMENT_PIM_ELIGIBLE, "pimEligible", self.directory.list_eligible_assignments),
            (ASSIGNMENT_PIM_ACTIVE, "pimActive", self.directory.list_active_assignments),
        )

        ok = True
        for source, count_field, fetch in streams:
            if ctx.is_cancelled():
                return ok
            try:
                rows = fetch(definition_id) or []
            except Exception as ex:
                ctx.metrics.increment("processingErrors")
                fncPrintMessage(f"Failed to fetch {source} assignments for {role_name}: {ex}", "warn")
                ok = False
                continue

            rows = _for_role(rows, definition_id)
            ctx.counts_for(role_name).increment(count_field, len(rows))

            for a in rows:
                if ctx.is_cancelled():
                    break
                window = fncWindow(a.get("startDateTime"), a.get("endDateTime"))
                self._handle_principal(a.get("principalId"), a.get("principalType"), role_name, source,
                                       window, display_name=a.get("principalDisplayName"))

        if ok:
            ctx.metrics.increment("pimRolesProcessed")
        return ok

    # ---------- shared ----------

    def _handle_principal(self, principal_id, principal_type, role_name, source, window, display_name=None):
        ctx = self.ctx
        if not principal_id:
            return
        include_groups = ctx.options.get("include_groups")
        try:
            if principal_type == PRINCIPAL_GROUP:
                if ctx.options.get("expand_groups"):
                    self.expander.dispatch(principal_id, role_name, source, window)
                elif include_groups:
                    fncEmitGroupRow(self.directory, ctx, principal_id, role_name, source, PATH_DIRECT, window)
            elif principal_type == PRINCIPAL_USER:
                fncEmitUser(self.directory, ctx, principal_id, role_name, source, PATH_DIRECT, window)
            elif include_groups:
                fncEmitOtherRow(ctx, {"id": principal_id, "type": principal_type, "displayName": display_name},
                                role_name, source, PATH_DIRECT, window)
        except Exception as ex:
            ctx.metrics.increment("processingErrors")
            fncPrintMessage(f"Failed to resolve {principal_type} {principal_id} for {role_name}: {ex}", "warn")


def _for_role(rows: List[Dict[str, Any]], definition_id: str) -> List[Dict[str, Any]]:
    return [a for a in rows if a.get("roleDefinitionId") in (None, definition_id)]
