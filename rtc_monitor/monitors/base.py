"""Base class for per-entity stat monitors.

A monitor wraps the latest accepted snapshot of one stats object and the
fields derived from the previous snapshot.

Architectural rules:
    1. Derived fields are recomputed only when the new snapshot's
       timestamp is strictly later than the held one.  Stale, duplicate
       and out-of-order snapshots are dropped silently and leave every
       field untouched.
    2. Monitors never hold other monitors.  Related entities are looked
       up by foreign id through the owning connection's stores.
    3. create_sample() returns only wire-shaped fields, never derived
       state.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Generic, Optional, TypeVar

from rtc_monitor.domain.records import StatsRecord
from rtc_monitor.foundation.clock import now_ms

if TYPE_CHECKING:
    from rtc_monitor.core.connection import ConnectionMonitor

S = TypeVar("S", bound=StatsRecord)


class StatsMonitor(Generic[S]):
    """Latest snapshot plus derived fields for one stats object."""

    def __init__(self, connection: ConnectionMonitor, stats: S) -> None:
        self._connection = connection
        self.stats: S = stats
        self.added_at: float = now_ms()
        self.app_data: dict[str, Any] = {}

    @property
    def id(self) -> str:
        return self.stats.id

    @property
    def timestamp(self) -> float:
        return self.stats.timestamp

    @property
    def connection(self) -> ConnectionMonitor:
        return self._connection

    def accept(self, stats: S) -> bool:
        """Take a newer snapshot.  Returns False if it was stale."""
        elapsed_ms = stats.timestamp - self.stats.timestamp
        if elapsed_ms <= 0:
            return False
        previous = self.stats
        self.stats = stats
        self._update_derived(previous, stats, elapsed_ms / 1000.0)
        return True

    def _update_derived(self, previous: S, current: S, elapsed_sec: float) -> None:
        """Recompute kind-specific derived fields.  Default: none."""

    def create_sample(self) -> dict[str, Any]:
        return self.stats.to_wire()


# ── Delta helpers ────────────────────────────────────────────────────────────

def delta(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    """current - previous, or None if either counter is missing."""
    if current is None or previous is None:
        return None
    return current - previous


def bitrate(current: Optional[int], previous: Optional[int], elapsed_sec: float) -> Optional[float]:
    """Bits per second from two byte counters, floored at zero."""
    diff = delta(current, previous)
    if diff is None:
        return None
    return max(0.0, (diff * 8) / elapsed_sec)


def fraction_lost(lost: Optional[float], received: Optional[float]) -> Optional[float]:
    """lost / (lost + received), 0.0 when both are zero."""
    if lost is None or received is None:
        return None
    total = lost + received
    if total <= 0:
        return 0.0
    return max(0.0, lost / total)
