# ================================================================
# File     : exports.py
# Purpose  : Handle export logic for PrivPoodle (JSON)
# Notes    : Called by PrivPoodle.py after the module finishes
# ================================================================

import pathlib
from datetime import datetime, timezone

from privpoodle.core.utils import fncPrintMessage, fncEnsureFolder, fncWriteJSON

SUPPORTED_FORMATS = {"json"}


# ================================================================
# Function: fncExportList
# Purpose  : Flatten --export list-of-lists from argparse
# Notes    : Unsupported formats are dropped with a warning
# ================================================================
def fncExportList(args_export) -> set:
    if not args_export:
        return set()
    out = set()
    chunks = args_export if isinstance(args_export, (list, tuple)) else [args_export]
    for chunk in chunks:
        items = chunk if isinstance(chunk, (list, tuple)) else [chunk]
        for item in items:
            if not isinstance(item, str):
                continue
            for part in item.replace(",", " ").split():
                out.add(part.strip().lower())

    unsupported = out - SUPPORTED_FORMATS
    if unsupported:
        fncPrintMessage(f"Export format(s) not supported, skipping: {', '.join(sorted(unsupported))}", "warn")
    return out & SUPPORTED_FORMATS


# ================================================================
# Function: fncGetExportPath
# Purpose  : Build structured output path under ~/.privpoodle/reports/
# ================================================================
def fncGetExportPath(module_name: str, root: pathlib.Path = None) -> pathlib.Path:
    if root is None:
        root = pathlib.Path.home() / ".privpoodle" / "reports"
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    mod_slug = module_name.replace("/", "_").replace("\\", "_")
    return fncEnsureFolder(pathlib.Path(root) / ts / mod_slug)


# ================================================================
# Function: fncExportModule
# Purpose  : Write every requested format for one module result
# Notes    : Returns the output folder, or None if nothing written
# ================================================================
def fncExportModule(module_name: str, data: dict, formats: set, root: pathlib.Path = None):
    if not formats:
        return None
    out_dir = fncGetExportPath(module_name, root)

    if "json" in formats:
        fncWriteJSON(str(out_dir / f"{module_name}.json"), data)

    fncPrintMessage(f"Exports written → {out_dir}", "success")
    return out_dir
