"""OutboundRtpMonitor — one sent RTP stream (a simulcast layer for video).

Besides the per-interval rates it keeps a stability score: a bounded
window of per-cycle delivery/latency samples published as a linearly
weighted mean once the window is half full.

    latency_factor  = 1 - min(0.1, |current_rtt - avg_rtt|) / 0.1
    delivery_factor = 1 - lost / (lost + max(1, sent))
    sample          = (latency_factor * 0.33 + delivery_factor * 0.67) ** 2
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rtc_monitor.domain.enums import MediaKind
from rtc_monitor.domain.records import OutboundRtpStats
from rtc_monitor.monitors.base import StatsMonitor, bitrate, delta
from rtc_monitor.scores.history import ScoreHistory

if TYPE_CHECKING:
    from rtc_monitor.core.connection import ConnectionMonitor
    from rtc_monitor.monitors.codec import CodecMonitor
    from rtc_monitor.monitors.ice import IceTransportMonitor
    from rtc_monitor.monitors.media import MediaSourceMonitor
    from rtc_monitor.monitors.remote_rtp import RemoteInboundRtpMonitor
    from rtc_monitor.monitors.tracks import OutboundTrackMonitor

STABILITY_WINDOW_LENGTH = 10


class OutboundRtpMonitor(StatsMonitor[OutboundRtpStats]):

    def __init__(
        self,
        connection: ConnectionMonitor,
        stats: OutboundRtpStats,
        stability_window_length: int = STABILITY_WINDOW_LENGTH,
    ) -> None:
        super().__init__(connection, stats)
        self.delta_packets_sent: Optional[int] = None
        self.delta_bytes_sent: Optional[int] = None
        self.packet_rate: Optional[float] = None
        self.bitrate: Optional[float] = None
        self.payload_bitrate: Optional[float] = None
        self.bit_per_pixel: Optional[float] = None
        self.stability_score: Optional[float] = None
        self._stability = ScoreHistory(
            max_length=stability_window_length,
            min_length=max(1, (stability_window_length + 1) // 2),
        )

    @property
    def ssrc(self) -> int:
        return self.stats.ssrc

    @property
    def kind(self) -> MediaKind:
        return self.stats.kind

    @property
    def track_identifier(self) -> Optional[str]:
        source = self.get_media_source()
        return source.track_identifier if source is not None else None

    def _update_derived(
        self,
        previous: OutboundRtpStats,
        current: OutboundRtpStats,
        elapsed_sec: float,
    ) -> None:
        self.delta_packets_sent = delta(current.packets_sent, previous.packets_sent)
        if self.delta_packets_sent is not None:
            self.packet_rate = self.delta_packets_sent / elapsed_sec

        self.delta_bytes_sent = delta(current.bytes_sent, previous.bytes_sent)
        self.bitrate = bitrate(current.bytes_sent, previous.bytes_sent, elapsed_sec)

        header_bytes = delta(current.header_bytes_sent, previous.header_bytes_sent)
        if self.delta_bytes_sent is not None and header_bytes is not None:
            retransmitted = (current.retransmitted_bytes_sent or 0) - (previous.retransmitted_bytes_sent or 0)
            payload_bytes = self.delta_bytes_sent - header_bytes - retransmitted
            self.payload_bitrate = max(0.0, payload_bytes * 8 / elapsed_sec)

        if current.frame_width and current.frame_height and current.frames_per_second and self.bitrate:
            self.bit_per_pixel = self.bitrate / (
                current.frame_width * current.frame_height * current.frames_per_second
            )

    def update_stability_score(self, current_rtt_sec: float, avg_rtt_sec: float) -> Optional[float]:
        """Push one stability sample; needs the remote-inbound counterpart."""
        remote_inbound = self.get_remote_inbound_rtp()
        if remote_inbound is None:
            return self.stability_score
        latency_factor = 1.0 - min(0.1, abs(current_rtt_sec - avg_rtt_sec)) / 0.1
        sent = max(1, self.delta_packets_sent or 0)
        lost = max(0, remote_inbound.delta_packets_lost or 0)
        delivery_factor = 1.0 - lost / (lost + sent)
        score = self._stability.push((latency_factor * 0.33 + delivery_factor * 0.67) ** 2)
        if score is not None:
            self.stability_score = score
        return self.stability_score

    # ── Cross-references ─────────────────────────────────────────────────

    def get_remote_inbound_rtp(self) -> Optional[RemoteInboundRtpMonitor]:
        store = self._connection.remote_inbound_rtps
        if self.stats.remote_id is not None:
            found = store.get(self.stats.remote_id)
            if found is not None:
                return found
        matches = store.get_all_by_index("ssrc", self.ssrc)
        return matches[0] if matches else None

    def get_codec(self) -> Optional[CodecMonitor]:
        return self._connection.codecs.get(self.stats.codec_id)

    def get_media_source(self) -> Optional[MediaSourceMonitor]:
        return self._connection.media_sources.get(self.stats.media_source_id)

    def get_transport(self) -> Optional[IceTransportMonitor]:
        return self._connection.transports.get(self.stats.transport_id)

    def get_track(self) -> Optional[OutboundTrackMonitor]:
        track_id = self.track_identifier
        if track_id is None:
            return None
        return self._connection.outbound_tracks.get(track_id)
