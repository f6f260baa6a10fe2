# ================================================================
# File     : utils.py
# Purpose  : Common helpers for PrivPoodle (console, files, time, data)
# Notes    : British English; witty output; thread-safe printing
# ================================================================

import os
import json
import time
import uuid
import random
import pathlib
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

from colorama import Fore, Style, init as _colorama_init
from tabulate import tabulate

_colorama_init(autoreset=True)

DEBUG_ENABLED = False

# Expansion workers print from several threads
_PRINT_LOCK = threading.Lock()


# ================================================================
# Function: fncSetDebug
# Purpose : Globally enable/disable debug output
# Notes   : Called from main after parsing --debug
# ================================================================
def fncSetDebug(enabled: bool) -> None:
    global DEBUG_ENABLED
    DEBUG_ENABLED = bool(enabled)


# ================================================================
# Function: fncPrintMessage
# Purpose : Standardised console output with levels and colours
# Notes   : Levels: info, warn, error, success, debug
# ================================================================
def fncPrintMessage(message: str, level: str = "info") -> None:
    if level == "debug" and not DEBUG_ENABLED:
        return
    colours = {
        "info": Fore.CYAN,
        "warn": Fore.YELLOW,
        "error": Fore.RED,
        "success": Fore.GREEN,
        "debug": Fore.MAGENTA
    }
    prefix = {
        "info": "[•]",
        "warn": "[!]",
        "error": "[✗]",
        "success": "[✓]",
        "debug": "[∆]"
    }
    colour = colours.get(level, "")
    mark = prefix.get(level, "[ ]")
    with _PRINT_LOCK:
        print(f"{colour}{mark} {message}{Style.RESET_ALL}")


# ================================================================
# Function: fncDisplayBanner
# Purpose : Display PrivPoodle ASCII banner in rainbow colours
# Notes   : Poodle mascot sits to the right of the title
# ================================================================
def fncDisplayBanner(version: str = "v1.0"):
    banner_lines = [
        "__________       .__      __________                  .___.__          ",
        "\\______   \\_______|__|__  _\\______   \\____   ____   __| _/|  |   ____  ",
        " |     ___/\\_  __ \\  \\  \\/ /|     ___/  _ \\ /  _ \\ / __ | |  | _/ __ \\ ",
        " |    |     |  | \\/  |\\   / |    |  (  <_> |  <_> ) /_/ | |  |_\\  ___/ ",
        " |____|     |__|  |__| \\_/  |____|   \\____/ \\____/\\____ | |____/\\___  >",
        "                                                      \\/           \\/  ",
    ]

    poodle_lines = [
        "   _     /)---(\\   ",
        "   \\   (/ . . \\)  ",
        "    \\__)-\\(*)/    ",
        "     \\_       (_   ",
        "     (___/-(____)   "
    ]

    colours = [Fore.RED, Fore.YELLOW, Fore.GREEN, Fore.BLUE]

    def rainbow(text: str) -> str:
        """Cycle through colours for a rainbow effect"""
        out = ""
        for i, ch in enumerate(text):
            out += colours[i % len(colours)] + ch
        return out + Style.RESET_ALL

    print("\n")

    max_banner_len = max(len(line) for line in banner_lines)
    for i in range(max(len(banner_lines), len(poodle_lines))):
        banner_part = banner_lines[i] if i < len(banner_lines) else ""
        combined_line = banner_part.ljust(max_banner_len + 5)
        if i < len(poodle_lines):
            combined_line += poodle_lines[i]
        print(rainbow(combined_line))

    print(f"{Fore.CYAN}\nPrivPoodle {version} — 'Sniffing out who really holds the keys.'{Style.RESET_ALL}\n")


# ================================================================
# Function: fncBlurb
# Purpose : Display a witty blurb describing current action
# ================================================================
def fncBlurb(action: str, flavour: str = None):
    blurbs = {
        "entra": [
            "Counting the Global Admins nobody remembers appointing…",
            "Following nested groups down the rabbit hole (and back out again)…",
            "Sniffing PIM schedules for eligible biscuits…"
        ],
        "generic": [
            "Preparing the harness…",
            "Sharpening claws and sniffers…",
        ]
    }
    flavour_text = flavour or random.choice(blurbs.get(action, blurbs["generic"]))
    fncPrintMessage(flavour_text, "info")


# ================================================================
# Function: fncEnsureFolder
# Purpose : Create a folder if it does not exist
# Notes   : Returns pathlib.Path object
# ================================================================
def fncEnsureFolder(path: str) -> pathlib.Path:
    p = pathlib.Path(path).expanduser().resolve()
    p.mkdir(parents=True, exist_ok=True)
    return p


# ================================================================
# Function: fncLoadEnv
# Purpose : Read environment variable with default
# Notes   : Strips quotes; returns default if empty
# ================================================================
def fncLoadEnv(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.getenv(name, default)
    if isinstance(val, str):
        val = val.strip().strip('"').strip("'")
        return val if val else default
    return val


# ================================================================
# Function: fncReadJSON
# Purpose : Load JSON from file safely
# Notes   : Returns {} on failure when safe=True
# ================================================================
def fncReadJSON(path: str, safe: bool = True) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError) as ex:
        if safe:
            fncPrintMessage(f"Could not read JSON '{path}': {ex}", "warn")
            return {}
        raise


# ================================================================
# Function: fncWriteJSON
# Purpose : Write data to JSON with nice formatting
# Notes   : Ensures parent folder exists; UTF-8; 2-space indent
# ================================================================
def fncWriteJSON(path: str, data: Dict[str, Any]) -> None:
    p = pathlib.Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    with open(p, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)
    fncPrintMessage(f"Saved JSON → {p}", "success")


# ================================================================
# Function: fncParseDateTime
# Purpose : Parse Graph ISO timestamps into aware datetimes
# Notes   : Returns None for empty or unparseable input
# ================================================================
def fncParseDateTime(val) -> Optional[datetime]:
    if not val:
        return None
    if isinstance(val, datetime):
        return val if val.tzinfo else val.replace(tzinfo=timezone.utc)
    s = str(val).strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    # Graph sends 7 fractional digits; fromisoformat wants at most 6
    if "." in s:
        head, _, tail = s.partition(".")
        frac = ""
        rest = ""
        for i, ch in enumerate(tail):
            if not ch.isdigit():
                rest = tail[i:]
                break
            frac += ch
        s = f"{head}.{frac[:6]}{rest}" if frac else f"{head}{rest}"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


# ================================================================
# Function: fncDaysSince
# Purpose : Whole days elapsed between a timestamp and now
# ================================================================
def fncDaysSince(when: datetime, now: Optional[datetime] = None) -> int:
    now = now or datetime.now(timezone.utc)
    return max(0, (now - when).days)


# ================================================================
# Function: fncIsoNow
# Purpose : Current UTC time as ISO8601
# ================================================================
def fncIsoNow() -> str:
    return datetime.now(timezone.utc).isoformat()


# ================================================================
# Function: fncRetry
# Purpose : Simple retry wrapper with backoff
# Notes   : backoff in seconds; returns fn result or raises.
#           Exceptions listed in no_retry are raised immediately.
# ================================================================
def fncRetry(fn, attempts: int = 3, backoff: float = 1.5, exceptions: Tuple = (Exception,),
             no_retry: Tuple = (), *args, **kwargs):
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except no_retry:
            raise
        except exceptions as ex:
            if attempt < attempts:
                sleep_for = backoff ** (attempt - 1)
                fncPrintMessage(f"Attempt {attempt}/{attempts} failed: {ex}. Retrying in {sleep_for:.1f}s…", "warn")
                time.sleep(sleep_for)
            else:
                fncPrintMessage(f"All {attempts} attempts failed: {ex}", "error")
                raise


# ================================================================
# Function: fncSafeGet
# Purpose : Safe nested dictionary access
# Notes   : path like 'a.b.c'; returns default when missing
# ================================================================
def fncSafeGet(data: Dict[str, Any], path: str, default: Any = None) -> Any:
    cur = data
    for part in path.split("."):
        if isinstance(cur, dict) and part in cur:
            cur = cur[part]
        else:
            return default
    return cur


# ================================================================
# Function: fncToTable
# Purpose : Render rows as a table string
# Notes   : Supports list[dict] (keys become headers) or list[list]
# ================================================================
def fncToTable(rows: Iterable[Any], headers: Optional[List[str]] = None, max_rows: Optional[int] = None) -> str:
    rows = list(rows)
    if not rows:
        return "(no data)"

    truncated = bool(max_rows and len(rows) > max_rows)
    if truncated:
        rows = rows[:max_rows]

    if isinstance(rows[0], dict):
        hdrs = headers or sorted({k for r in rows for k in r.keys()})
        table_rows = [["" if r.get(h) is None else r.get(h) for h in hdrs] for r in rows]
        if truncated:
            table_rows.append(["…"] * len(hdrs))
        return tabulate(table_rows, headers=hdrs, tablefmt="github")
    return tabulate(rows, headers=(headers or "firstrow"), tablefmt="github")


# ================================================================
# Function: fncMask
# Purpose : Mask sensitive strings (client secrets, tokens)
# Notes   : Keeps start/end visible; handles short strings
# ================================================================
def fncMask(value: Optional[str], show: int = 4) -> str:
    if not value:
        return ""
    if len(value) <= show * 2:
        return "*" * len(value)
    return f"{value[:show]}{'*' * (len(value) - (show*2))}{value[-show:]}"


# ================================================================
# Function: fncNewRunId
# Purpose : Generate a short unique run identifier
# Notes   : Useful for correlating logs and outputs
# ================================================================
def fncNewRunId(prefix: str = "run") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:8]}"
