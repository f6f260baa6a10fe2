"""Shared fixtures: an in-memory directory built from a snapshot dict."""

import threading
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest

from privpoodle.core.errors import UpstreamFetchError
from privpoodle.core.utils import fncSetDebug

NOW = datetime(2026, 1, 31, 12, 0, 0, tzinfo=timezone.utc)


def make_user(uid: str, days_ago: int = None, never: bool = False, unavailable: bool = False, **extra):
    """Graph-shaped user profile."""
    profile = {
        "id": uid,
        "displayName": f"User {uid}",
        "userPrincipalName": f"{uid}@contoso.example",
        "mail": f"{uid}@contoso.example",
        "department": "IT",
        "jobTitle": "Engineer",
        "accountEnabled": True,
        "createdDateTime": "2024-01-01T00:00:00Z",
        "lastPasswordChangeDateTime": "2025-06-01T00:00:00Z",
    }
    if unavailable:
        profile["signInActivity"] = "Not Found"
    elif never:
        profile["signInActivity"] = {"lastSignInDateTime": None}
    else:
        when = NOW - timedelta(days=days_ago or 0)
        profile["signInActivity"] = {"lastSignInDateTime": when.strftime("%Y-%m-%dT%H:%M:%SZ")}
    profile.update(extra)
    return profile


def make_group(gid: str):
    return {"id": gid, "displayName": f"Group {gid}", "mail": None, "createdDateTime": "2023-05-05T00:00:00Z"}


def user_ref(uid):
    return {"id": uid, "type": "User"}


def group_ref(gid):
    return {"id": gid, "type": "Group"}


def pim(principal_id, principal_type, role_id, start="2026-01-01T00:00:00Z", end="2026-12-31T00:00:00Z"):
    return {
        "principalId": principal_id,
        "principalType": principal_type,
        "roleDefinitionId": role_id,
        "startDateTime": start,
        "endDateTime": end,
    }


class FakeDirectory:
    """Answers the directory interface from a snapshot.

    snapshot keys: roles, role_members, group_members, users, groups,
    eligible, active, fail (method name -> set of ids that raise).
    """

    def __init__(self, snapshot: Dict[str, Any]):
        self.snapshot = snapshot
        self.calls = Counter()
        self._lock = threading.Lock()

    def _track(self, method, key):
        with self._lock:
            self.calls[(method, key)] += 1
        if key in self.snapshot.get("fail", {}).get(method, set()):
            raise UpstreamFetchError(f"{method}({key}) failed", status=503)

    def list_roles(self):
        self._track("list_roles", None)
        return list(self.snapshot.get("roles", []))

    def list_role_members(self, role_id):
        self._track("list_role_members", role_id)
        return list(self.snapshot.get("role_members", {}).get(role_id, []))

    def list_group_members(self, group_id):
        self._track("list_group_members", group_id)
        return list(self.snapshot.get("group_members", {}).get(group_id, []))

    def get_user_profile(self, user_id):
        self._track("get_user_profile", user_id)
        return self.snapshot.get("users", {}).get(user_id)

    def get_group_details(self, group_id):
        self._track("get_group_details", group_id)
        return self.snapshot.get("groups", {}).get(group_id)

    def list_eligible_assignments(self, role_definition_id):
        self._track("list_eligible_assignments", role_definition_id)
        return list(self.snapshot.get("eligible", {}).get(role_definition_id, []))

    def list_active_assignments(self, role_definition_id):
        self._track("list_active_assignments", role_definition_id)
        return list(self.snapshot.get("active", {}).get(role_definition_id, []))

    def expansions(self, group_id):
        return self.calls[("list_group_members", group_id)]


@pytest.fixture(autouse=True)
def quiet_debug():
    fncSetDebug(False)
    yield
    fncSetDebug(False)


@pytest.fixture
def scenario_a_snapshot():
    """Global Administrator: 1 direct user, 1 PIM-eligible group.

    g-ops holds u2, u3 and nested group g-nested (holding u4).
    """
    return {
        "roles": [
            {"id": "r-ga", "displayName": "Global Administrator"},
            {"id": "r-sec", "displayName": "Security Administrator"},
        ],
        "role_members": {"r-ga": [user_ref("u1")]},
        "eligible": {"r-ga": [pim("g-ops", "Group", "r-ga")]},
        "active": {},
        "group_members": {
            "g-ops": [user_ref("u2"), user_ref("u3"), group_ref("g-nested")],
            "g-nested": [user_ref("u4")],
        },
        "users": {uid: make_user(uid, days_ago=5) for uid in ("u1", "u2", "u3", "u4")},
        "groups": {"g-ops": make_group("g-ops"), "g-nested": make_group("g-nested")},
    }


@pytest.fixture
def fake_directory_factory():
    def _factory(snapshot):
        return FakeDirectory(snapshot)
    return _factory
