# ================================================================
# File     : resolver/principals.py
# Purpose  : Turn a principal reference into a MemberRecord
# Notes    : Shared by the assignment resolver and group expander.
#            NotFoundError is skipped quietly; other failures are
#            counted and logged by the caller's unit
# ================================================================

from typing import Any, Dict, Optional

from privpoodle.core.errors import NotFoundError
from privpoodle.core.utils import fncPrintMessage
from privpoodle.resolver.context import RunContext
from privpoodle.resolver.records import fncUserRecord, fncGroupRecord

PRINCIPAL_USER = "User"
PRINCIPAL_GROUP = "Group"


def fncEmitUser(directory, ctx: RunContext, user_id: str, role_name: str, assignment_type: str,
                assignment_path: str, window: Optional[Dict[str, Any]] = None) -> bool:
    try:
        profile = directory.get_user_profile(user_id)
    except NotFoundError:
        profile = None
    if not profile:
        fncPrintMessage(f"User {user_id} not found; skipping ({role_name})", "debug")
        return False
    record = fncUserRecord(role_name, profile, assignment_type, assignment_path, window, now=ctx.now)
    return ctx.emit(record)


def fncEmitGroupRow(directory, ctx: RunContext, group_id: str, role_name: str, assignment_type: str,
                    assignment_path: str, window: Optional[Dict[str, Any]] = None) -> bool:
    try:
        details = directory.get_group_details(group_id)
    except NotFoundError:
        details = None
    if not details:
        fncPrintMessage(f"Group {group_id} not found; skipping row ({role_name})", "debug")
        return False
    record = fncGroupRecord(role_name, details, assignment_type, assignment_path, window)
    return ctx.emit(record)


def fncEmitOtherRow(ctx: RunContext, principal: Dict[str, Any], role_name: str, assignment_type: str,
                    assignment_path: str, window: Optional[Dict[str, Any]] = None) -> bool:
    """Non-user, non-group principals (service principals) as a bare row."""
    details = {"id": principal.get("id"), "displayName": principal.get("displayName")}
    record = fncGroupRecord(role_name, details, assignment_type, assignment_path, window,
                            object_type=principal.get("type") or "Unknown")
    return ctx.emit(record)
