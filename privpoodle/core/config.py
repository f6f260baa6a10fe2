# ================================================================
# File     : config.py
# Purpose  : Configuration management for PrivPoodle
# Notes    : Handles initial creation, loading, and saving of config,
#            plus the default resolution options and their validation
# ================================================================

import copy
import pathlib

from privpoodle.core.errors import ValidationError
from privpoodle.core.roles import DEFAULT_PRIVILEGED_ROLES
from privpoodle.core.utils import fncPrintMessage, fncEnsureFolder, fncReadJSON, fncWriteJSON, fncLoadEnv

ASSIGNMENT_TYPES = ("All", "DirectOnly", "PIMOnly")
EXPANSION_SCOPES = ("run", "assignment")

DEFAULT_CONFIG_PATH = pathlib.Path.home() / ".privpoodle" / "config.json"


# ================================================================
# Function: fncDefaultResolveOptions
# Purpose : Default options for a role membership resolution run
# ================================================================
def fncDefaultResolveOptions() -> dict:
    return {
        "assignment_types": "All",
        "expand_groups": True,
        "include_groups": False,
        "days_inactive": 0,
        "include_summary": False,
        "max_concurrent_groups": 4,
        "timeout_seconds": 0,
        "expansion_scope": "run",
        "exempt_never_signed_in": False,
    }


# ================================================================
# Function: fncDefaultConfig
# Purpose : Return a default configuration dictionary
# Notes   : Called when config file does not exist
# ================================================================
def fncDefaultConfig() -> dict:
    return {
        "version": "1.0",
        "privpoodle_home": str(pathlib.Path.home() / ".privpoodle"),
        "debug": False,
        "providers": {
            "entra": {
                "tenant_id": "",
                "client_id": "",
                "client_secret": "",
                "authority": "https://login.microsoftonline.com"
            }
        },
        "privileged_roles": list(DEFAULT_PRIVILEGED_ROLES),
        "resolution": fncDefaultResolveOptions(),
    }


# ================================================================
# Function: fncInitConfig
# Purpose : Create or load configuration file
# Notes   : Ensures base folder exists; returns full config dict
# ================================================================
def fncInitConfig(config_path: str = None) -> dict:
    path = pathlib.Path(config_path or DEFAULT_CONFIG_PATH)

    fncEnsureFolder(path.parent)

    if not path.exists():
        fncPrintMessage(f"No config found at {path}. Creating default...", "warn")
        cfg = fncDefaultConfig()
        fncWriteJSON(str(path), cfg)
        return fncApplyEnvOverrides(cfg)
    return fncLoadConfig(str(path))


# ================================================================
# Function: fncLoadConfig
# Purpose : Load configuration file and apply environment overrides
# Notes   : Missing sections are filled from the defaults so older
#           config files keep working
# ================================================================
def fncLoadConfig(config_path: str) -> dict:
    loaded = fncReadJSON(config_path)
    cfg = fncDefaultConfig()

    for key, val in loaded.items():
        if isinstance(val, dict) and isinstance(cfg.get(key), dict):
            cfg[key] = _merge(cfg[key], val)
        else:
            cfg[key] = val

    fncPrintMessage(f"Loaded configuration from {config_path}", "debug")
    return fncApplyEnvOverrides(cfg)


def _merge(base: dict, extra: dict) -> dict:
    out = copy.deepcopy(base)
    for k, v in extra.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _merge(out[k], v)
        else:
            out[k] = v
    return out


# ================================================================
# Function: fncApplyEnvOverrides
# Purpose : Environment overrides (useful in CI/CD or container)
# ================================================================
def fncApplyEnvOverrides(cfg: dict) -> dict:
    entra = cfg["providers"]["entra"]
    entra["tenant_id"] = fncLoadEnv("PRIVPOODLE_TENANT_ID", entra.get("tenant_id"))
    entra["client_id"] = fncLoadEnv("PRIVPOODLE_CLIENT_ID", entra.get("client_id"))
    entra["client_secret"] = fncLoadEnv("PRIVPOODLE_CLIENT_SECRET", entra.get("client_secret"))

    res = cfg["resolution"]
    max_groups = fncLoadEnv("PRIVPOODLE_MAX_CONCURRENT_GROUPS")
    if max_groups:
        res["max_concurrent_groups"] = _as_int("PRIVPOODLE_MAX_CONCURRENT_GROUPS", max_groups)
    days = fncLoadEnv("PRIVPOODLE_DAYS_INACTIVE")
    if days:
        res["days_inactive"] = _as_int("PRIVPOODLE_DAYS_INACTIVE", days)
    return cfg


def _as_int(name: str, raw: str) -> int:
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got '{raw}'")


# ================================================================
# Function: fncSaveConfig
# Purpose : Save configuration file safely
# ================================================================
def fncSaveConfig(cfg: dict, config_path: str = None) -> None:
    path = pathlib.Path(config_path or DEFAULT_CONFIG_PATH)
    fncEnsureFolder(path.parent)
    fncWriteJSON(str(path), cfg)
    fncPrintMessage(f"Configuration saved → {path}", "success")


# ================================================================
# Function: fncApplyCliOverrides
# Purpose : Apply command-line flags to the loaded config
# Notes   : Only flags the user actually passed override config
# ================================================================
def fncApplyCliOverrides(cfg: dict, args) -> dict:
    if getattr(args, "debug", None):
        cfg["debug"] = True

    roles = getattr(args, "roles", None)
    if roles:
        cfg["privileged_roles"] = [r.strip() for r in roles.split(",") if r.strip()]

    res = cfg.setdefault("resolution", fncDefaultResolveOptions())
    overrides = {
        "assignment_types": getattr(args, "assignment_types", None),
        "days_inactive": getattr(args, "days_inactive", None),
        "max_concurrent_groups": getattr(args, "max_concurrent_groups", None),
        "timeout_seconds": getattr(args, "timeout", None),
        "expansion_scope": getattr(args, "expansion_scope", None),
    }
    for key, val in overrides.items():
        if val is not None:
            res[key] = val

    if getattr(args, "no_expand_groups", False):
        res["expand_groups"] = False
    if getattr(args, "include_groups", False):
        res["include_groups"] = True
    if getattr(args, "include_summary", False):
        res["include_summary"] = True
    if getattr(args, "exempt_never_signed_in", False):
        res["exempt_never_signed_in"] = True
    return cfg


# ================================================================
# Function: fncIsDebug
# Purpose : Return whether debug mode is enabled in config
# ================================================================
def fncIsDebug(cfg: dict) -> bool:
    return bool(cfg.get("debug", False))


# ================================================================
# Function: fncValidateResolveOptions
# Purpose : Fill defaults and reject options the resolver cannot use
# Notes   : Raises ValidationError; returns a new dict
# ================================================================
def fncValidateResolveOptions(options: dict = None) -> dict:
    opts = fncDefaultResolveOptions()
    unknown = set(options or {}) - set(opts)
    if unknown:
        raise ValidationError(f"Unknown resolution option(s): {', '.join(sorted(unknown))}")
    opts.update(options or {})

    if opts["assignment_types"] not in ASSIGNMENT_TYPES:
        raise ValidationError(
            f"assignment_types must be one of {', '.join(ASSIGNMENT_TYPES)}; got '{opts['assignment_types']}'"
        )
    if opts["expansion_scope"] not in EXPANSION_SCOPES:
        raise ValidationError(
            f"expansion_scope must be one of {', '.join(EXPANSION_SCOPES)}; got '{opts['expansion_scope']}'"
        )

    for key in ("days_inactive", "max_concurrent_groups"):
        val = opts[key]
        if isinstance(val, bool) or not isinstance(val, int):
            raise ValidationError(f"{key} must be an integer; got {val!r}")
    if opts["days_inactive"] < 0:
        raise ValidationError("days_inactive cannot be negative (0 disables the filter)")
    if opts["max_concurrent_groups"] < 1:
        raise ValidationError("max_concurrent_groups must be at least 1")

    timeout = opts["timeout_seconds"]
    if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout < 0:
        raise ValidationError(f"timeout_seconds must be a non-negative number; got {timeout!r}")

    for key in ("expand_groups", "include_groups", "include_summary", "exempt_never_signed_in"):
        opts[key] = bool(opts[key])
    return opts
