"""Monitors for the remote side's view of our RTP streams (RTCP reports)."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rtc_monitor.domain.enums import MediaKind
from rtc_monitor.domain.records import RemoteInboundRtpStats, RemoteOutboundRtpStats
from rtc_monitor.monitors.base import StatsMonitor, bitrate, delta, fraction_lost

if TYPE_CHECKING:
    from rtc_monitor.monitors.inbound_rtp import InboundRtpMonitor
    from rtc_monitor.monitors.outbound_rtp import OutboundRtpMonitor


class RemoteInboundRtpMonitor(StatsMonitor[RemoteInboundRtpStats]):
    """What the remote receiver reports about one of our outbound streams."""

    def __init__(self, connection, stats: RemoteInboundRtpStats) -> None:
        super().__init__(connection, stats)
        self.delta_packets_received: Optional[int] = None
        self.delta_packets_lost: Optional[int] = None
        self.packet_rate: Optional[float] = None
        self.fraction_lost: Optional[float] = stats.fraction_lost

    @property
    def ssrc(self) -> int:
        return self.stats.ssrc

    @property
    def kind(self) -> MediaKind:
        return self.stats.kind

    def _update_derived(
        self,
        previous: RemoteInboundRtpStats,
        current: RemoteInboundRtpStats,
        elapsed_sec: float,
    ) -> None:
        received = delta(current.packets_received, previous.packets_received)
        if received is not None:
            self.delta_packets_received = max(0, received)
            self.packet_rate = self.delta_packets_received / elapsed_sec
        self.delta_packets_lost = delta(current.packets_lost, previous.packets_lost)
        if current.fraction_lost is not None:
            self.fraction_lost = current.fraction_lost
        else:
            self.fraction_lost = fraction_lost(self.delta_packets_lost, self.delta_packets_received)

    def get_outbound_rtp(self) -> Optional[OutboundRtpMonitor]:
        if self.stats.local_id is not None:
            found = self._connection.outbound_rtps.get(self.stats.local_id)
            if found is not None:
                return found
        matches = self._connection.outbound_rtps.get_all_by_index("ssrc", self.ssrc)
        return matches[0] if matches else None


class RemoteOutboundRtpMonitor(StatsMonitor[RemoteOutboundRtpStats]):
    """What the remote sender reports about one of our inbound streams."""

    def __init__(self, connection, stats: RemoteOutboundRtpStats) -> None:
        super().__init__(connection, stats)
        self.delta_packets_sent: Optional[int] = None
        self.bitrate: Optional[float] = None

    @property
    def ssrc(self) -> int:
        return self.stats.ssrc

    @property
    def kind(self) -> MediaKind:
        return self.stats.kind

    def _update_derived(
        self,
        previous: RemoteOutboundRtpStats,
        current: RemoteOutboundRtpStats,
        elapsed_sec: float,
    ) -> None:
        self.delta_packets_sent = delta(current.packets_sent, previous.packets_sent)
        self.bitrate = bitrate(current.bytes_sent, previous.bytes_sent, elapsed_sec)

    def get_inbound_rtp(self) -> Optional[InboundRtpMonitor]:
        if self.stats.local_id is not None:
            found = self._connection.inbound_rtps.get(self.stats.local_id)
            if found is not None:
                return found
        matches = self._connection.inbound_rtps.get_all_by_index("ssrc", self.ssrc)
        return matches[0] if matches else None
