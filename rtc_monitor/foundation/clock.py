"""Wall-clock utilities.

Stat reports carry their own timestamps, but detectors measure how long
a condition has held in local wall-clock milliseconds.  This module is
the single source of "now" so tests can monkey-patch it trivially.
"""

from __future__ import annotations

import time


def now_ms() -> float:
    """Return the current wall-clock time in epoch milliseconds."""
    return time.time() * 1000.0
