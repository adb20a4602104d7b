"""InboundRtpMonitor — one received RTP stream.

Derived per-interval fields:
    - bitrate / delta_bytes_received
    - delta_packets_lost / delta_packets_received and fraction_lost
    - delta_frames_received / delta_frames_rendered (video playout)
    - receiving_audio_samples
    - avg_jitter_buffer_delay_ms
    - delta_corruption_probability
    - a sliding window of framesPerSecond giving avg_frames_per_sec,
      fps_volatility and ewma_fps, plus bit_per_pixel

is_freezed is owned by the freeze detector and only read elsewhere.
"""

from __future__ import annotations

from collections import deque
from typing import TYPE_CHECKING, Optional

from rtc_monitor.domain.enums import MediaKind
from rtc_monitor.domain.records import InboundRtpStats
from rtc_monitor.monitors.base import StatsMonitor, bitrate, delta, fraction_lost

if TYPE_CHECKING:
    from rtc_monitor.core.connection import ConnectionMonitor
    from rtc_monitor.monitors.codec import CodecMonitor
    from rtc_monitor.monitors.ice import IceTransportMonitor
    from rtc_monitor.monitors.media import MediaPlayoutMonitor
    from rtc_monitor.monitors.remote_rtp import RemoteOutboundRtpMonitor
    from rtc_monitor.monitors.tracks import InboundTrackMonitor

FPS_WINDOW_LENGTH = 10
EXPECTED_VIDEO_FPS = 30.0


class InboundRtpMonitor(StatsMonitor[InboundRtpStats]):

    def __init__(self, connection: ConnectionMonitor, stats: InboundRtpStats) -> None:
        super().__init__(connection, stats)
        self.expected_frames_per_second: Optional[float] = (
            EXPECTED_VIDEO_FPS if stats.kind == MediaKind.VIDEO else None
        )
        self.bitrate: Optional[float] = None
        self.delta_bytes_received: Optional[int] = None
        self.delta_packets_lost: Optional[int] = None
        self.delta_packets_received: Optional[int] = None
        self.delta_frames_received: Optional[int] = None
        self.delta_frames_rendered: Optional[int] = None
        self.delta_frames_dropped: Optional[int] = None
        self.receiving_audio_samples: Optional[int] = None
        self.avg_jitter_buffer_delay_ms: Optional[float] = None
        self.delta_corruption_probability: Optional[float] = None
        self.fraction_lost: Optional[float] = None
        self.last_n_frames_per_sec: deque[float] = deque(maxlen=FPS_WINDOW_LENGTH)
        self.avg_frames_per_sec: Optional[float] = None
        self.fps_volatility: Optional[float] = None
        self.ewma_fps: Optional[float] = None
        self.bit_per_pixel: Optional[float] = None
        self.is_freezed: bool = False

    # ── Identity ─────────────────────────────────────────────────────────

    @property
    def ssrc(self) -> int:
        return self.stats.ssrc

    @property
    def kind(self) -> MediaKind:
        return self.stats.kind

    @property
    def track_identifier(self) -> str:
        return self.stats.track_identifier

    # ── Derived fields ───────────────────────────────────────────────────

    def _update_derived(
        self,
        previous: InboundRtpStats,
        current: InboundRtpStats,
        elapsed_sec: float,
    ) -> None:
        self.delta_bytes_received = delta(current.bytes_received, previous.bytes_received)
        self.bitrate = bitrate(current.bytes_received, previous.bytes_received, elapsed_sec)
        self.delta_packets_lost = delta(current.packets_lost, previous.packets_lost)
        self.delta_packets_received = delta(current.packets_received, previous.packets_received)
        self.fraction_lost = fraction_lost(self.delta_packets_lost, self.delta_packets_received)
        self.receiving_audio_samples = delta(
            current.total_samples_received, previous.total_samples_received
        )
        self.delta_frames_received = delta(current.frames_received, previous.frames_received)
        self.delta_frames_rendered = delta(current.frames_rendered, previous.frames_rendered)
        self.delta_frames_dropped = delta(current.frames_dropped, previous.frames_dropped)

        jb_delay = delta(current.jitter_buffer_delay, previous.jitter_buffer_delay)
        jb_emitted = delta(current.jitter_buffer_emitted_count, previous.jitter_buffer_emitted_count)
        if jb_delay is not None and jb_emitted is not None:
            self.avg_jitter_buffer_delay_ms = (jb_delay / max(jb_emitted, 1)) * 1000

        corruption = delta(current.total_corruption_probability, previous.total_corruption_probability)
        measurements = delta(current.corruption_measurements, previous.corruption_measurements)
        if corruption is not None and measurements is not None:
            self.delta_corruption_probability = max(0.0, corruption / max(1, measurements))

        fps = current.frames_per_second
        if fps:
            self.last_n_frames_per_sec.append(fps)
            window = self.last_n_frames_per_sec
            avg = sum(window) / len(window)
            self.avg_frames_per_sec = avg
            self.fps_volatility = (sum(abs(v - avg) for v in window) / len(window)) / avg
            self.ewma_fps = fps if self.ewma_fps is None else 0.9 * self.ewma_fps + 0.1 * fps
            if self.bitrate and current.frame_width and current.frame_height:
                self.bit_per_pixel = self.bitrate / (current.frame_width * current.frame_height)

    # ── Cross-references ─────────────────────────────────────────────────

    def get_codec(self) -> Optional[CodecMonitor]:
        return self._connection.codecs.get(self.stats.codec_id)

    def get_transport(self) -> Optional[IceTransportMonitor]:
        return self._connection.transports.get(self.stats.transport_id)

    def get_media_playout(self) -> Optional[MediaPlayoutMonitor]:
        return self._connection.media_playouts.get(self.stats.playout_id)

    def get_remote_outbound_rtp(self) -> Optional[RemoteOutboundRtpMonitor]:
        store = self._connection.remote_outbound_rtps
        if self.stats.remote_id is not None:
            found = store.get(self.stats.remote_id)
            if found is not None:
                return found
        matches = store.get_all_by_index("ssrc", self.ssrc)
        return matches[0] if matches else None

    def get_track(self) -> Optional[InboundTrackMonitor]:
        return self._connection.inbound_tracks.get(self.track_identifier)
