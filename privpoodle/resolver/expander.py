# ================================================================
# File     : resolver/expander.py
# Purpose  : Expand a role-granting group into its effective users,
#            following nested groups on the bounded expansion pool
# Notes    : Each group key is expanded at most once per run; the
#            visited claim in dispatch() is what stops A -> B -> A loops
# ================================================================

from typing import Any, Dict, Optional

from privpoodle.core.errors import NotFoundError
from privpoodle.core.utils import fncPrintMessage
from privpoodle.resolver.context import RunContext
from privpoodle.resolver.principals import (
    PRINCIPAL_USER,
    PRINCIPAL_GROUP,
    fncEmitUser,
    fncEmitGroupRow,
)
from privpoodle.resolver.records import PATH_VIA_GROUP


class GroupExpander:
    def __init__(self, directory, ctx: RunContext):
        self.directory = directory
        self.ctx = ctx

    def dispatch(self, group_id: str, role_name: str, assignment_type: str,
                 window: Optional[Dict[str, Any]] = None) -> bool:
        """Claim a group and queue its expansion.

        The claim is made on the calling thread, so top-level groups go to
        roles in role-loop order. False if the group was already claimed or
        the run is cancelled.
        """
        ctx = self.ctx
        if ctx.is_cancelled():
            fncPrintMessage(f"Run cancelled; not expanding group {group_id}", "debug")
            return False
        if not ctx.visited.add_if_absent(ctx.visit_key(group_id, role_name, assignment_type)):
            fncPrintMessage(f"Group {group_id} already claimed for expansion; skipping", "debug")
            return False
        queued = ctx.pool.submit(self.expand, group_id, role_name, assignment_type, window)
        if not queued:
            fncPrintMessage(f"Run cancelled; not expanding group {group_id}", "debug")
        return queued

    def expand(self, group_id: str, role_name: str, assignment_type: str,
               window: Optional[Dict[str, Any]] = None) -> None:
        """Expand a group already claimed by dispatch()."""
        ctx = self.ctx
        try:
            members = self.directory.list_group_members(group_id) or []
        except NotFoundError:
            fncPrintMessage(f"Group {group_id} not found; nothing to expand", "debug")
            return
        except Exception as ex:
            ctx.metrics.increment("processingErrors")
            fncPrintMessage(f"Failed to list members of group {group_id} ({role_name}): {ex}", "warn")
            return

        ctx.metrics.increment("groupsExpanded")
        fncPrintMessage(f"Expanding group {group_id} for {role_name}: {len(members)} member(s)", "debug")

        for member in members:
            if ctx.is_cancelled():
                fncPrintMessage(f"Run cancelled mid-way through group {group_id}", "debug")
                return
            member_id = member.get("id")
            member_type = member.get("type")
            if not member_id:
                continue
            try:
                if member_type == PRINCIPAL_USER:
                    fncEmitUser(self.directory, ctx, member_id, role_name, assignment_type,
                                PATH_VIA_GROUP, window)
                elif member_type == PRINCIPAL_GROUP:
                    if ctx.options.get("include_groups"):
                        fncEmitGroupRow(self.directory, ctx, member_id, role_name, assignment_type,
                                        PATH_VIA_GROUP, window)
                    self.dispatch(member_id, role_name, assignment_type, window)
                else:
                    fncPrintMessage(f"Skipping {member_type or 'unknown'} member {member_id} of group {group_id}", "debug")
            except Exception as ex:
                ctx.metrics.increment("processingErrors")
                fncPrintMessage(f"Failed to resolve member {member_id} of group {group_id}: {ex}", "warn")
