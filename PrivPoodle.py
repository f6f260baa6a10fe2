#!/usr/bin/env python3
# ================================================================
# Tool     : PrivPoodle
# Purpose  : Resolve who really holds privileged Entra ID roles
# Notes    : "Every admin leaves a scent." 🐩
# ================================================================

import sys
import argparse
import pathlib

from privpoodle.core.config import fncInitConfig, fncApplyCliOverrides, fncIsDebug, ASSIGNMENT_TYPES, EXPANSION_SCOPES
from privpoodle.core.errors import PoodleError, ValidationError
from privpoodle.core.exports import fncExportList, fncExportModule
from privpoodle.core.utils import fncPrintMessage, fncSetDebug, fncDisplayBanner, fncBlurb, fncMask
from privpoodle.modules.entra import priv_role_members

MODULE_NAME = "priv_role_members"

EXIT_OK = 0
EXIT_VALIDATION = 1
EXIT_PARTIAL = 2


# ================================================================
# Function: fncParseArguments
# Purpose  : Define and parse command-line arguments for PrivPoodle
# ================================================================
def fncParseArguments(argv=None):
    parser = argparse.ArgumentParser(
        prog="PrivPoodle",
        description="PrivPoodle 🐩 — privileged Entra role membership resolver"
    )

    parser.add_argument("--config", help="Path to config.json (default: ~/.privpoodle/config.json)")
    parser.add_argument("--roles", help="Comma-separated role names to resolve (overrides config catalog)")
    parser.add_argument(
        "--assignment-types",
        choices=list(ASSIGNMENT_TYPES),
        default=None,
        help="Which assignments to include (default: All)"
    )
    parser.add_argument("--no-expand-groups", action="store_true", help="Do not expand role-assigned groups")
    parser.add_argument("--include-groups", action="store_true", help="Emit groups as their own rows")
    parser.add_argument(
        "--days-inactive",
        type=int,
        default=None,
        help="Only keep users who signed in within N days (0 disables)"
    )
    parser.add_argument(
        "--exempt-never-signed-in",
        action="store_true",
        help="Keep never-signed-in accounts when --days-inactive is set"
    )
    parser.add_argument("--include-summary", action="store_true", help="Append one summary row per role")
    parser.add_argument(
        "--max-concurrent-groups",
        type=int,
        default=None,
        help="Maximum concurrent group expansions (default: 4)"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Stop dispatching new work after N seconds and return partial results"
    )
    parser.add_argument(
        "--expansion-scope",
        choices=list(EXPANSION_SCOPES),
        default=None,
        help="Expand each group once per run, or once per role assignment"
    )
    parser.add_argument(
        "--export",
        nargs="*",
        metavar="FMT[,FMT...]",
        help="Export formats: json",
        default=None
    )
    parser.add_argument("--audit-events", action="store_true", help="Echo audit events (with --debug)")
    parser.add_argument("--debug", action="store_true", help="Enable verbose debug output")

    return parser.parse_args(argv)


# ================================================================
# Function: fncInitClient
# Purpose  : Build the Graph client from config/env (may prompt)
# ================================================================
def fncInitClient(cfg: dict):
    from privpoodle.handlers.graph.client import GraphClient

    entra_cfg = cfg.get("providers", {}).get("entra", {})
    tenant_id = entra_cfg.get("tenant_id")
    client_id = entra_cfg.get("client_id")
    client_secret = entra_cfg.get("client_secret")

    if not all([tenant_id, client_id, client_secret]):
        fncPrintMessage("Missing Entra credentials — dropping into interactive mode…", "warn")
    else:
        fncPrintMessage(f"Using app {fncMask(client_id)} in tenant {fncMask(tenant_id)}", "debug")

    return GraphClient(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
        authority_host=entra_cfg.get("authority") or "https://login.microsoftonline.com",
    )


# ================================================================
# Function: main
# Purpose  : Main entry point for PrivPoodle execution
# Notes    : Exit 0 clean, 1 validation failure, 2 partial results
# ================================================================
def main(argv=None) -> int:
    args = fncParseArguments(argv)

    try:
        cfg = fncInitConfig(args.config)
        cfg = fncApplyCliOverrides(cfg, args)
    except ValidationError as ex:
        fncPrintMessage(f"Invalid configuration: {ex}", "error")
        return EXIT_VALIDATION
    fncSetDebug(fncIsDebug(cfg))

    fncDisplayBanner("v1.0")
    fncBlurb("entra")
    if fncIsDebug(cfg):
        fncPrintMessage("Debug output enabled.", "debug")

    try:
        client = fncInitClient(cfg)
    except PoodleError as ex:
        fncPrintMessage(f"Unable to continue without a Graph client: {ex}", "error")
        return EXIT_VALIDATION

    try:
        result = priv_role_members.run(client, args, cfg=cfg, connected=client.validate_connection())
    except ValidationError as ex:
        fncPrintMessage(f"Validation failed: {ex}", "error")
        return EXIT_VALIDATION

    export_formats = fncExportList(args.export)
    if export_formats:
        fncExportModule(MODULE_NAME, result, export_formats,
                        pathlib.Path(cfg.get("privpoodle_home") or pathlib.Path.home() / ".privpoodle") / "reports")

    if result["metrics"]["processingErrors"] or result["metrics"]["cancelled"]:
        fncPrintMessage("Scan finished with partial results. Sniff again later.", "warn")
        return EXIT_PARTIAL

    fncPrintMessage("Scan complete. Tail wag achieved.", "success")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
