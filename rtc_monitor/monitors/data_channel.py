"""DataChannelMonitor — SCTP data channel traffic."""

from __future__ import annotations

from typing import Optional

from rtc_monitor.domain.records import DataChannelStats
from rtc_monitor.monitors.base import StatsMonitor, delta


class DataChannelMonitor(StatsMonitor[DataChannelStats]):

    def __init__(self, connection, stats: DataChannelStats) -> None:
        super().__init__(connection, stats)
        self.delta_bytes_sent: Optional[int] = None
        self.delta_bytes_received: Optional[int] = None

    @property
    def label(self) -> str:
        return self.stats.label

    def _update_derived(
        self,
        previous: DataChannelStats,
        current: DataChannelStats,
        elapsed_sec: float,
    ) -> None:
        self.delta_bytes_sent = delta(current.bytes_sent, previous.bytes_sent)
        self.delta_bytes_received = delta(current.bytes_received, previous.bytes_received)
