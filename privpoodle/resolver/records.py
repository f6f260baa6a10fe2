# ================================================================
# File     : resolver/records.py
# Purpose  : Build MemberRecord rows from Graph user/group payloads
# Notes    : Records are plain dicts, created once and never edited
# ================================================================

import sys
from datetime import datetime
from typing import Any, Dict, Optional

from privpoodle.core.utils import fncParseDateTime, fncDaysSince

ASSIGNMENT_DIRECT = "Direct"
ASSIGNMENT_PIM_ELIGIBLE = "PIMEligible"
ASSIGNMENT_PIM_ACTIVE = "PIMActive"

PATH_DIRECT = "Direct"
PATH_VIA_GROUP = "Via Group"

OBJECT_USER = "User"
OBJECT_GROUP = "Group"
OBJECT_SUMMARY = "Summary"

NEVER_SIGNED_IN = "Never"
MAX_INT = sys.maxsize

# Directory field that says sign-in activity could not be read
UNAVAILABLE = "Not Found"

RECORD_FIELDS = (
    "roleName",
    "objectType",
    "objectId",
    "displayName",
    "userPrincipalName",
    "email",
    "department",
    "jobTitle",
    "accountEnabled",
    "lastSignInTime",
    "daysSinceSignIn",
    "createdTime",
    "lastPasswordChangeTime",
    "assignmentType",
    "assignmentPath",
    "eligibilityWindow",
)


def fncSignInActivity(profile: Dict[str, Any], now: Optional[datetime] = None):
    """Return (lastSignInTime, daysSinceSignIn) for a user profile.

    - activity unreadable (no licence/permission) -> (None, None)
    - readable but empty                           -> ("Never", MAX_INT)
    - timestamp                                    -> (iso string, days)
    """
    activity = profile.get("signInActivity")
    if activity == UNAVAILABLE:
        return None, None
    if not isinstance(activity, dict):
        activity = {}

    raw = activity.get("lastSignInDateTime")
    if not raw:
        return NEVER_SIGNED_IN, MAX_INT

    when = fncParseDateTime(raw)
    if when is None:
        return raw, None
    return raw, fncDaysSince(when, now)


def fncWindow(start, end) -> Dict[str, Any]:
    return {"start": start or None, "end": end or None}


def fncUserRecord(role_name: str, profile: Dict[str, Any], assignment_type: str,
                  assignment_path: str, window: Optional[Dict[str, Any]] = None,
                  now: Optional[datetime] = None) -> Dict[str, Any]:
    last_sign_in, days = fncSignInActivity(profile, now)
    return {
        "roleName": role_name,
        "objectType": OBJECT_USER,
        "objectId": profile.get("id"),
        "displayName": profile.get("displayName"),
        "userPrincipalName": profile.get("userPrincipalName"),
        "email": profile.get("mail"),
        "department": profile.get("department"),
        "jobTitle": profile.get("jobTitle"),
        "accountEnabled": profile.get("accountEnabled"),
        "lastSignInTime": last_sign_in,
        "daysSinceSignIn": days,
        "createdTime": profile.get("createdDateTime"),
        "lastPasswordChangeTime": profile.get("lastPasswordChangeDateTime"),
        "assignmentType": assignment_type,
        "assignmentPath": assignment_path,
        "eligibilityWindow": dict(window) if window else None,
    }


def fncGroupRecord(role_name: str, details: Dict[str, Any], assignment_type: str,
                   assignment_path: str, window: Optional[Dict[str, Any]] = None,
                   object_type: str = OBJECT_GROUP) -> Dict[str, Any]:
    return {
        "roleName": role_name,
        "objectType": object_type,
        "objectId": details.get("id"),
        "displayName": details.get("displayName"),
        "userPrincipalName": None,
        "email": details.get("mail"),
        "department": None,
        "jobTitle": None,
        "accountEnabled": details.get("accountEnabled"),
        "lastSignInTime": None,
        "daysSinceSignIn": None,
        "createdTime": details.get("createdDateTime"),
        "lastPasswordChangeTime": None,
        "assignmentType": assignment_type,
        "assignmentPath": assignment_path,
        "eligibilityWindow": dict(window) if window else None,
    }


def fncSummaryRecord(role_name: str, counts: Dict[str, int]) -> Dict[str, Any]:
    row = {field: None for field in RECORD_FIELDS}
    row["roleName"] = role_name
    row["objectType"] = OBJECT_SUMMARY
    row["directCount"] = counts.get("direct", 0)
    row["pimEligibleCount"] = counts.get("pimEligible", 0)
    row["pimActiveCount"] = counts.get("pimActive", 0)
    row["totalCount"] = counts.get("total", 0)
    return row


def fncRecordKey(record: Dict[str, Any]):
    """Uniqueness key: one record per (role, principal, source)."""
    return record.get("roleName"), record.get("objectId"), record.get("assignmentType")


def fncRecordRank(record: Dict[str, Any]):
    """Order between records that share a uniqueness key; lower is kept."""
    window = record.get("eligibilityWindow") or {}
    return (
        0 if record.get("assignmentPath") == PATH_DIRECT else 1,
        str(window.get("start") or ""),
        str(window.get("end") or ""),
    )
