import argparse
import json
from unittest.mock import MagicMock, patch

import pytest

import PrivPoodle
from conftest import FakeDirectory, make_user, user_ref
from privpoodle.core.config import fncDefaultConfig
from privpoodle.core.errors import UpstreamFetchError, ValidationError
from privpoodle.modules.entra import priv_role_members


def _args(**overrides):
    base = dict(audit_events=False)
    base.update(overrides)
    return argparse.Namespace(**base)


def _cfg(tmp_path, roles=("Global Administrator",), **resolution):
    cfg = fncDefaultConfig()
    cfg["privpoodle_home"] = str(tmp_path)
    cfg["privileged_roles"] = list(roles)
    cfg["resolution"].update(resolution)
    return cfg


# ---------- module ----------

def test_run_returns_module_payload(tmp_path, scenario_a_snapshot, capsys):
    data = priv_role_members.run(FakeDirectory(scenario_a_snapshot), _args(), cfg=_cfg(tmp_path, include_summary=True))

    assert data["provider"] == "entra"
    assert data["run_id"].startswith("privroles-")
    assert data["summary"]["Members"] == 4
    assert data["summary"]["Processing Errors"] == 0
    assert data["role_counts"]["Global Administrator"]["total"] == 2
    assert data["metrics"]["roleCounts"]["Global Administrator"]["direct"] == 1
    assert any(r["objectType"] == "Summary" for r in data["members"])
    assert "Privileged role members" in capsys.readouterr().out


def test_run_shows_never_signed_in_as_infinity(tmp_path, capsys):
    directory = FakeDirectory({
        "roles": [{"id": "r-ga", "displayName": "Global Administrator"}],
        "role_members": {"r-ga": [user_ref("ghost")]},
        "users": {"ghost": make_user("ghost", never=True)},
    })
    priv_role_members.run(directory, _args(), cfg=_cfg(tmp_path))
    assert "∞" in capsys.readouterr().out


def test_run_flags_partial_results(tmp_path, scenario_a_snapshot, capsys):
    scenario_a_snapshot["fail"] = {"list_role_members": {"r-ga"}}
    data = priv_role_members.run(FakeDirectory(scenario_a_snapshot), _args(), cfg=_cfg(tmp_path))

    assert data["metrics"]["processingErrors"] == 1
    assert "may be incomplete" in capsys.readouterr().out


def test_run_wraps_a_graph_client_in_a_directory(tmp_path):
    client = MagicMock(spec=["get", "get_all"])
    client.get_all.return_value = []
    data = priv_role_members.run(client, _args(), cfg=_cfg(tmp_path))

    assert data["members"] == []
    assert client.get_all.call_args_list[0].args[0].startswith("roleManagement/directory/roleDefinitions")


def test_run_refuses_a_disconnected_session(tmp_path, scenario_a_snapshot):
    with pytest.raises(ValidationError):
        priv_role_members.run(FakeDirectory(scenario_a_snapshot), _args(), cfg=_cfg(tmp_path), connected=False)


# ---------- CLI ----------

def test_parse_arguments_defaults_leave_config_alone():
    args = PrivPoodle.fncParseArguments([])
    assert args.assignment_types is None
    assert args.days_inactive is None
    assert args.no_expand_groups is False
    assert args.export is None


def test_parse_arguments_rejects_unknown_assignment_type():
    with pytest.raises(SystemExit):
        PrivPoodle.fncParseArguments(["--assignment-types", "Everything"])


@pytest.fixture
def cli(tmp_path, scenario_a_snapshot, monkeypatch):
    for name in ("PRIVPOODLE_MAX_CONCURRENT_GROUPS", "PRIVPOODLE_DAYS_INACTIVE"):
        monkeypatch.delenv(name, raising=False)
    config_path = tmp_path / "config.json"
    config_path.write_text(json.dumps({
        "privpoodle_home": str(tmp_path),
        "privileged_roles": ["Global Administrator"],
    }))

    directory = FakeDirectory(scenario_a_snapshot)
    directory.validate_connection = MagicMock(return_value=True)
    with patch.object(PrivPoodle, "fncInitClient", return_value=directory), \
            patch.object(PrivPoodle, "fncDisplayBanner"):
        yield directory, ["--config", str(config_path)]


def test_main_clean_run_exits_zero(cli):
    _, argv = cli
    assert PrivPoodle.main(argv) == PrivPoodle.EXIT_OK


def test_main_exports_json(cli, tmp_path):
    _, argv = cli
    assert PrivPoodle.main(argv + ["--export", "json"]) == PrivPoodle.EXIT_OK

    (written,) = list((tmp_path / "reports").rglob("priv_role_members.json"))
    payload = json.loads(written.read_text(encoding="utf-8"))
    assert len(payload["members"]) == 4


def test_main_partial_results_exit_two(cli, scenario_a_snapshot):
    _, argv = cli
    scenario_a_snapshot["fail"] = {"list_active_assignments": {"r-ga"}}
    assert PrivPoodle.main(argv) == PrivPoodle.EXIT_PARTIAL


def test_main_disconnected_session_exits_one(cli):
    directory, argv = cli
    directory.validate_connection.return_value = False
    assert PrivPoodle.main(argv) == PrivPoodle.EXIT_VALIDATION


def test_main_bad_option_exits_one(cli):
    _, argv = cli
    assert PrivPoodle.main(argv + ["--days-inactive", "-3"]) == PrivPoodle.EXIT_VALIDATION


def test_main_client_failure_exits_one(cli):
    _, argv = cli
    with patch.object(PrivPoodle, "fncInitClient", side_effect=UpstreamFetchError("no token")):
        assert PrivPoodle.main(argv) == PrivPoodle.EXIT_VALIDATION


def test_main_bad_env_override_exits_one(cli, monkeypatch):
    _, argv = cli
    monkeypatch.setenv("PRIVPOODLE_MAX_CONCURRENT_GROUPS", "lots")
    assert PrivPoodle.main(argv) == PrivPoodle.EXIT_VALIDATION
