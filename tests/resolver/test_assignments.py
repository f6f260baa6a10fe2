import pytest

from conftest import NOW, FakeDirectory, make_group, make_user, pim, user_ref, group_ref
from privpoodle.core.config import fncValidateResolveOptions
from privpoodle.core.events import MemoryEventSink
from privpoodle.resolver.assignments import AssignmentResolver
from privpoodle.resolver.context import RunContext
from privpoodle.resolver.expander import GroupExpander

GA = {"id": "r-ga", "displayName": "Global Administrator"}


@pytest.fixture
def build():
    contexts = []

    def _build(snapshot, sink=None, **options):
        directory = FakeDirectory(snapshot)
        ctx = RunContext(fncValidateResolveOptions(options), event_sink=sink, now=NOW)
        contexts.append(ctx)
        resolver = AssignmentResolver(directory, ctx, GroupExpander(directory, ctx))
        return directory, ctx, resolver

    yield _build
    for ctx in contexts:
        ctx.pool.shutdown()


def test_direct_user_assignment(build):
    _, ctx, resolver = build({
        "role_members": {"r-ga": [user_ref("u1")]},
        "users": {"u1": make_user("u1", days_ago=4)},
    })
    assert resolver.resolve_role(GA) is True

    (record,) = ctx.members.snapshot()
    assert record["assignmentType"] == "Direct"
    assert record["assignmentPath"] == "Direct"
    assert record["eligibilityWindow"] is None
    assert ctx.role_counts["Global Administrator"].as_dict()["direct"] == 1
    assert ctx.metrics.directRolesProcessed == 1
    assert ctx.metrics.pimRolesProcessed == 1


def test_pim_streams_carry_their_window(build):
    _, ctx, resolver = build({
        "eligible": {"r-ga": [pim("u1", "User", "r-ga", end="2026-03-01T00:00:00Z")]},
        "active": {"r-ga": [pim("u2", "User", "r-ga", start="2026-01-30T00:00:00Z", end=None)]},
        "users": {"u1": make_user("u1", days_ago=1), "u2": make_user("u2", days_ago=1)},
    })
    resolver.resolve_role(GA)

    by_id = {r["objectId"]: r for r in ctx.members.snapshot()}
    assert by_id["u1"]["assignmentType"] == "PIMEligible"
    assert by_id["u1"]["eligibilityWindow"]["end"] == "2026-03-01T00:00:00Z"
    assert by_id["u2"]["assignmentType"] == "PIMActive"
    assert by_id["u2"]["eligibilityWindow"] == {"start": "2026-01-30T00:00:00Z", "end": None}
    assert ctx.role_counts["Global Administrator"].reconcile() == {
        "direct": 0, "pimEligible": 1, "pimActive": 1, "total": 2,
    }


def test_pim_rows_for_other_roles_are_ignored(build):
    _, ctx, resolver = build({
        "eligible": {"r-ga": [pim("u1", "User", "r-ga"), pim("u9", "User", "r-other")]},
        "users": {"u1": make_user("u1"), "u9": make_user("u9")},
    })
    resolver.resolve_role(GA)
    assert {r["objectId"] for r in ctx.members.snapshot()} == {"u1"}


def test_pim_uses_template_id_when_present(build):
    directory, _, resolver = build({})
    resolver.resolve_role({"id": "r-ga", "displayName": "Global Administrator", "templateId": "tmpl-ga"})
    assert directory.calls[("list_eligible_assignments", "tmpl-ga")] == 1
    assert directory.calls[("list_role_members", "r-ga")] == 1


def test_same_user_direct_and_eligible_gives_two_records(build):
    _, ctx, resolver = build({
        "role_members": {"r-ga": [user_ref("u1")]},
        "eligible": {"r-ga": [pim("u1", "User", "r-ga")]},
        "users": {"u1": make_user("u1")},
    })
    resolver.resolve_role(GA)
    assert sorted(r["assignmentType"] for r in ctx.members.snapshot()) == ["Direct", "PIMEligible"]


def test_direct_only_skips_pim(build):
    directory, ctx, resolver = build({"eligible": {"r-ga": [pim("u1", "User", "r-ga")]}},
                                     assignment_types="DirectOnly")
    resolver.resolve_role(GA)
    assert directory.calls[("list_eligible_assignments", "r-ga")] == 0
    assert ctx.metrics.pimRolesProcessed == 0


def test_pim_only_skips_direct(build):
    directory, ctx, resolver = build({"role_members": {"r-ga": [user_ref("u1")]}},
                                     assignment_types="PIMOnly")
    resolver.resolve_role(GA)
    assert directory.calls[("list_role_members", "r-ga")] == 0
    assert ctx.metrics.directRolesProcessed == 0


def test_failed_eligible_stream_still_reads_active(build):
    sink = MemoryEventSink()
    _, ctx, resolver = build({
        "active": {"r-ga": [pim("u2", "User", "r-ga")]},
        "users": {"u2": make_user("u2")},
        "fail": {"list_eligible_assignments": {"r-ga"}},
    }, sink=sink)

    assert resolver.resolve_role(GA) is False
    assert ctx.metrics.processingErrors == 1
    assert ctx.metrics.pimRolesProcessed == 0
    assert [r["objectId"] for r in ctx.members.snapshot()] == ["u2"]
    assert sink.events[-1]["event"] == "resolution.role_failed"


def test_deleted_user_is_skipped_quietly(build):
    _, ctx, resolver = build({"role_members": {"r-ga": [user_ref("u-deleted")]}})
    assert resolver.resolve_role(GA) is True
    assert len(ctx.members) == 0
    assert ctx.metrics.processingErrors == 0
    # the assignment still counts
    assert ctx.role_counts["Global Administrator"].reconcile()["direct"] == 1


def test_group_assignment_without_expansion_or_rows_is_counted_only(build):
    directory, ctx, resolver = build({"role_members": {"r-ga": [group_ref("g1")]}}, expand_groups=False)
    resolver.resolve_role(GA)
    assert len(ctx.members) == 0
    assert directory.expansions("g1") == 0
    assert ctx.role_counts["Global Administrator"].reconcile()["direct"] == 1


def test_group_assignment_as_row_when_not_expanding(build):
    _, ctx, resolver = build({
        "role_members": {"r-ga": [group_ref("g1")]},
        "groups": {"g1": make_group("g1")},
    }, expand_groups=False, include_groups=True)
    resolver.resolve_role(GA)

    (record,) = ctx.members.snapshot()
    assert record["objectType"] == "Group"
    assert record["assignmentPath"] == "Direct"


def test_service_principal_rows_only_with_include_groups(build):
    snapshot = {"role_members": {"r-ga": [{"id": "sp1", "type": "ServicePrincipal", "displayName": "Backup App"}]}}

    _, ctx, resolver = build(snapshot)
    resolver.resolve_role(GA)
    assert len(ctx.members) == 0

    _, ctx, resolver = build(snapshot, include_groups=True)
    resolver.resolve_role(GA)
    (record,) = ctx.members.snapshot()
    assert record["objectType"] == "ServicePrincipal"
    assert record["displayName"] == "Backup App"


def test_role_processed_event_carries_counts(build):
    sink = MemoryEventSink()
    _, _, resolver = build({"role_members": {"r-ga": [user_ref("u1")]}, "users": {"u1": make_user("u1")}},
                           sink=sink)
    resolver.resolve_role(GA)

    event = sink.events[-1]
    assert event["event"] == "resolution.role_processed"
    assert event["attributes"]["role"] == "Global Administrator"
    assert event["attributes"]["total"] == 1
