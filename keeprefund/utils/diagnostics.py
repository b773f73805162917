"""Stderr diagnostics for refunds runs.

Stdout is reserved for the CSV report, so every progress line goes to
stderr with a component tag and timestamp. Debug lines are dropped unless
enabled (the CLI's --debug flag).
"""
from __future__ import annotations

import sys
import time

_debug_enabled = False


def set_debug(enabled: bool) -> None:
    global _debug_enabled
    _debug_enabled = enabled


def log(tag: str, msg: str) -> None:
    """Print timestamped diagnostic to stderr."""
    ts = time.strftime("%H:%M:%S")
    print(f"[{tag} {ts}] {msg}", file=sys.stderr)


def debug(tag: str, msg: str) -> None:
    if _debug_enabled:
        log(tag, msg)
