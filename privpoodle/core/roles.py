# ================================================================
# File     : core/roles.py
# Purpose  : Catalog of privileged Entra directory roles to resolve
# Notes    : Names match role definition displayName in Graph
# ================================================================

from typing import Iterable, List

DEFAULT_PRIVILEGED_ROLES = (
    "Global Administrator",
    "Privileged Role Administrator",
    "Privileged Authentication Administrator",
    "Security Administrator",
    "User Administrator",
    "Exchange Administrator",
    "SharePoint Administrator",
    "Application Administrator",
    "Cloud Application Administrator",
    "Authentication Administrator",
    "Conditional Access Administrator",
    "Intune Administrator",
    "Billing Administrator",
    "Helpdesk Administrator",
    "Hybrid Identity Administrator",
)


# ================================================================
# Function: fncRoleCatalog
# Purpose : Normalise a role catalog (trim, drop blanks and dupes)
# Notes   : Falls back to DEFAULT_PRIVILEGED_ROLES; order preserved
# ================================================================
def fncRoleCatalog(names: Iterable[str] = None) -> List[str]:
    if names is None:
        names = DEFAULT_PRIVILEGED_ROLES
    out: List[str] = []
    seen = set()
    for n in names:
        n = (n or "").strip()
        if n and n.lower() not in seen:
            seen.add(n.lower())
            out.append(n)
    return out


# ================================================================
# Function: fncSelectRoles
# Purpose : Pick the directory roles named in the catalog
# Notes   : Case-insensitive match on displayName; returns
#           (matched roles in catalog order, catalog names not found)
# ================================================================
def fncSelectRoles(directory_roles: List[dict], catalog: List[str]):
    by_name = {}
    for r in directory_roles or []:
        name = (r.get("displayName") or "").strip().lower()
        if name and name not in by_name:
            by_name[name] = r

    matched, missing = [], []
    for name in catalog:
        role = by_name.get(name.lower())
        if role:
            matched.append(role)
        else:
            missing.append(name)
    return matched, missing
