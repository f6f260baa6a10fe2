# ================================================================
# File     : handlers/graph/directory.py
# Purpose  : Directory reads the role membership resolver needs,
#            answered from Microsoft Graph v1.0
# Notes    : Read-only. Retries/throttling live in GraphClient.
#            404s become "nothing there" (None / []), everything
#            else propagates to the resolver, which counts it
# ================================================================

import threading
from typing import Dict, Any, List, Optional

from privpoodle.core.errors import NotFoundError
from privpoodle.core.utils import fncPrintMessage, fncSafeGet
from privpoodle.handlers.graph.client import GraphClientError
from privpoodle.handlers.graph.graph_helpers import RejectedFields, safe_select_get

REQUIRED_PERMS = [
    "RoleManagement.Read.Directory",
    "Directory.Read.All",
    "GroupMember.Read.All",
    "User.Read.All",
    # Optional: without it signInActivity is reported as unavailable
    "AuditLog.Read.All",
]

USER_FIELDS = [
    "id",
    "displayName",
    "userPrincipalName",
    "mail",
    "department",
    "jobTitle",
    "accountEnabled",
    "createdDateTime",
    "lastPasswordChangeDateTime",
    "signInActivity",
]

GROUP_FIELDS = [
    "id",
    "displayName",
    "mail",
    "createdDateTime",
    "securityEnabled",
    "isAssignableToRole",
    "groupTypes",
]

ELIGIBLE_RESOURCE = "roleEligibilityScheduleInstances"
ACTIVE_RESOURCE = "roleAssignmentScheduleInstances"


def fncPrincipalType(obj: Dict[str, Any]) -> str:
    odata = (obj.get("@odata.type") or "").lower()
    if odata.endswith(".user"):
        return "User"
    if odata.endswith(".group"):
        return "Group"
    if odata.endswith(".serviceprincipal"):
        return "ServicePrincipal"
    if odata.endswith(".device"):
        return "Device"
    return "Unknown"


def _principal_ref(obj: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "id": obj.get("id"),
        "type": fncPrincipalType(obj),
        "displayName": obj.get("displayName"),
    }


class GraphDirectory:
    def __init__(self, client):
        self.client = client
        self._type_cache: Dict[str, str] = {}
        self._type_lock = threading.Lock()
        self._rejected = RejectedFields()

    # ---------- roles ----------

    def list_roles(self) -> List[Dict[str, Any]]:
        try:
            rows = self.client.get_all("roleManagement/directory/roleDefinitions?$select=id,displayName,templateId")
        except GraphClientError:
            rows = self.client.get_all("roleManagement/directory/roleDefinitions")
        out = []
        for r in rows or []:
            out.append({
                "id": r.get("id"),
                "displayName": r.get("displayName") or "(unknown role)",
                "templateId": r.get("templateId") or r.get("id"),
            })
        return out

    def list_role_members(self, role_id: str) -> List[Dict[str, Any]]:
        """Standing members of the activated directory role."""
        try:
            rows = self.client.get_all(f"directoryRoles(roleTemplateId='{role_id}')/members?$select=id,displayName")
        except NotFoundError:
            fncPrintMessage(f"Role {role_id} is not activated in this tenant; no direct members", "debug")
            return []
        return [_principal_ref(r) for r in rows or [] if r.get("id")]

    # ---------- groups & users ----------

    def list_group_members(self, group_id: str) -> List[Dict[str, Any]]:
        rows = self.client.get_all(f"groups/{group_id}/members?$select=id,displayName")
        return [_principal_ref(r) for r in rows or [] if r.get("id")]

    def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        try:
            item, _missing = safe_select_get(self.client, f"users/{user_id}", USER_FIELDS,
                                             droppable_on_forbidden=["signInActivity"],
                                             rejected=self._rejected)
        except NotFoundError:
            return None
        return item

    def get_group_details(self, group_id: str) -> Optional[Dict[str, Any]]:
        try:
            item, _missing = safe_select_get(self.client, f"groups/{group_id}", GROUP_FIELDS,
                                             rejected=self._rejected)
        except NotFoundError:
            return None
        return item

    # ---------- PIM schedules ----------

    def list_eligible_assignments(self, role_definition_id: str) -> List[Dict[str, Any]]:
        return self._schedule_instances(ELIGIBLE_RESOURCE, role_definition_id)

    def list_active_assignments(self, role_definition_id: str) -> List[Dict[str, Any]]:
        return self._schedule_instances(ACTIVE_RESOURCE, role_definition_id)

    def _schedule_instances(self, resource: str, role_definition_id: str) -> List[Dict[str, Any]]:
        base = f"roleManagement/directory/{resource}?$filter=roleDefinitionId eq '{role_definition_id}'"
        try:
            rows = self.client.get_all(base + "&$expand=principal")
            expanded = True
        except GraphClientError as ex:
            fncPrintMessage(f"{resource} $expand failed; resolving principal types one by one ({ex})", "warn")
            rows = self.client.get_all(base)
            expanded = False

        out = []
        for r in rows or []:
            pid = r.get("principalId")
            if not pid:
                continue
            if expanded and isinstance(r.get("principal"), dict):
                ptype = fncPrincipalType(r["principal"])
            else:
                ptype = self._lookup_type(pid)
            out.append({
                "principalId": pid,
                "principalType": ptype,
                "principalDisplayName": fncSafeGet(r, "principal.displayName"),
                "roleDefinitionId": r.get("roleDefinitionId"),
                "directoryScopeId": r.get("directoryScopeId"),
                "startDateTime": r.get("startDateTime"),
                "endDateTime": r.get("endDateTime"),
            })
        return out

    def _lookup_type(self, principal_id: str) -> str:
        with self._type_lock:
            if principal_id in self._type_cache:
                return self._type_cache[principal_id]
        try:
            obj = self.client.get(f"directoryObjects/{principal_id}?$select=id")
            ptype = fncPrincipalType(obj)
        except NotFoundError:
            ptype = "Unknown"
        with self._type_lock:
            self._type_cache[principal_id] = ptype
        return ptype
