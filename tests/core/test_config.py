import argparse
import json

import pytest

from privpoodle.core import config
from privpoodle.core.errors import ValidationError
from privpoodle.core.roles import DEFAULT_PRIVILEGED_ROLES


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("PRIVPOODLE_TENANT_ID", "PRIVPOODLE_CLIENT_ID", "PRIVPOODLE_CLIENT_SECRET",
                 "PRIVPOODLE_MAX_CONCURRENT_GROUPS", "PRIVPOODLE_DAYS_INACTIVE"):
        monkeypatch.delenv(name, raising=False)


def _args(**overrides):
    base = dict(debug=False, roles=None, assignment_types=None, days_inactive=None,
                max_concurrent_groups=None, timeout=None, expansion_scope=None,
                no_expand_groups=False, include_groups=False, include_summary=False,
                exempt_never_signed_in=False)
    base.update(overrides)
    return argparse.Namespace(**base)


def test_init_config_creates_default_file(tmp_path):
    path = tmp_path / "nested" / "config.json"
    cfg = config.fncInitConfig(str(path))

    assert path.exists()
    assert cfg["privileged_roles"] == list(DEFAULT_PRIVILEGED_ROLES)
    assert cfg["resolution"] == config.fncDefaultResolveOptions()


def test_load_config_fills_missing_sections(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({
        "debug": True,
        "resolution": {"days_inactive": 45},
        "providers": {"entra": {"tenant_id": "tenant-from-file"}},
    }))
    cfg = config.fncInitConfig(str(path))

    assert cfg["debug"] is True
    assert cfg["resolution"]["days_inactive"] == 45
    assert cfg["resolution"]["max_concurrent_groups"] == 4
    assert cfg["providers"]["entra"]["tenant_id"] == "tenant-from-file"
    assert cfg["providers"]["entra"]["authority"] == "https://login.microsoftonline.com"


def test_unreadable_config_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{ not json")
    cfg = config.fncLoadConfig(str(path))
    assert cfg["resolution"] == config.fncDefaultResolveOptions()


def test_env_overrides_win_over_file(monkeypatch):
    monkeypatch.setenv("PRIVPOODLE_TENANT_ID", "'env-tenant'")
    monkeypatch.setenv("PRIVPOODLE_MAX_CONCURRENT_GROUPS", "12")
    monkeypatch.setenv("PRIVPOODLE_DAYS_INACTIVE", "30")
    cfg = config.fncApplyEnvOverrides(config.fncDefaultConfig())

    assert cfg["providers"]["entra"]["tenant_id"] == "env-tenant"
    assert cfg["resolution"]["max_concurrent_groups"] == 12
    assert cfg["resolution"]["days_inactive"] == 30


def test_non_numeric_env_override_is_a_validation_error(monkeypatch):
    monkeypatch.setenv("PRIVPOODLE_DAYS_INACTIVE", "ninety")
    with pytest.raises(ValidationError):
        config.fncApplyEnvOverrides(config.fncDefaultConfig())


def test_cli_overrides_only_touch_passed_flags():
    cfg = config.fncApplyCliOverrides(config.fncDefaultConfig(), _args(
        roles=" Global Administrator, ,Security Administrator",
        days_inactive=60,
        timeout=2.5,
        no_expand_groups=True,
        include_summary=True,
    ))
    res = cfg["resolution"]

    assert cfg["privileged_roles"] == ["Global Administrator", "Security Administrator"]
    assert res["days_inactive"] == 60
    assert res["timeout_seconds"] == 2.5
    assert res["expand_groups"] is False
    assert res["include_summary"] is True
    assert res["assignment_types"] == "All"
    assert res["include_groups"] is False


def test_save_config_round_trips(tmp_path):
    path = tmp_path / "config.json"
    cfg = config.fncDefaultConfig()
    cfg["resolution"]["days_inactive"] = 7
    config.fncSaveConfig(cfg, str(path))
    assert config.fncLoadConfig(str(path))["resolution"]["days_inactive"] == 7


def test_validate_fills_defaults():
    assert config.fncValidateResolveOptions(None) == config.fncDefaultResolveOptions()


def test_validate_coerces_flags_to_bool():
    opts = config.fncValidateResolveOptions({"include_groups": 1, "expand_groups": 0})
    assert opts["include_groups"] is True
    assert opts["expand_groups"] is False


@pytest.mark.parametrize("options", [
    {"days_inactive": -5},
    {"days_inactive": "30"},
    {"days_inactive": True},
    {"max_concurrent_groups": 0},
    {"timeout_seconds": -1},
    {"timeout_seconds": "soon"},
    {"assignment_types": "direct"},
    {"expansion_scope": "tenant"},
    {"surprise": 1},
])
def test_validate_rejects_bad_options(options):
    with pytest.raises(ValidationError):
        config.fncValidateResolveOptions(options)
