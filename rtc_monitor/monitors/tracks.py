"""Track monitors — one media track seen through its RTP streams.

An inbound track wraps exactly one inbound-rtp stream.  An outbound
track wraps one media source and every outbound-rtp stream (simulcast
layer) fed by it.  Track monitors own the track-level detectors and the
track score; they are created by the connection when the stream or
source first appears and discarded when it is swept.

Track state fields (muted, enabled, ready_state, ...) are not part of
any stats record.  They are set by whoever owns the real media track.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Optional

from rtc_monitor.detectors.base import Detectors
from rtc_monitor.detectors.track import (
    AudioDesyncDetector,
    DryInboundTrackDetector,
    DryOutboundTrackDetector,
    FreezedVideoTrackDetector,
    PlayoutDiscrepancyDetector,
)
from rtc_monitor.domain.enums import MediaKind, TrackDirection
from rtc_monitor.scores.calculated import CalculatedScore

if TYPE_CHECKING:
    from rtc_monitor.core.connection import ConnectionMonitor
    from rtc_monitor.monitors.inbound_rtp import InboundRtpMonitor
    from rtc_monitor.monitors.media import MediaSourceMonitor
    from rtc_monitor.monitors.outbound_rtp import OutboundRtpMonitor

# Synthetic bandwidth-probing stream; never worth detecting on.
PROBATOR_TRACK_ID = "probator"


class InboundTrackMonitor:
    """A remote track received over one inbound-rtp stream."""

    direction = TrackDirection.INBOUND

    def __init__(self, connection: ConnectionMonitor, inbound_rtp: InboundRtpMonitor) -> None:
        self._connection = connection
        self._inbound_rtp = inbound_rtp
        self.track_id: str = inbound_rtp.track_identifier
        self.kind: MediaKind = inbound_rtp.kind
        self.score = CalculatedScore()
        self.app_data: dict[str, Any] = {}

        self.muted = False
        self.enabled = True
        self.ready_state = "live"
        self.remote_outbound_track_paused = False
        self.dtx_mode = False

        self.detectors = Detectors(DryInboundTrackDetector(self))
        if self.kind == MediaKind.AUDIO:
            self.detectors.add(AudioDesyncDetector(self))
        else:
            self.detectors.add(FreezedVideoTrackDetector(self))
            self.detectors.add(PlayoutDiscrepancyDetector(self))
        if self.track_id == PROBATOR_TRACK_ID:
            self.detectors.clear()

    @property
    def connection(self) -> ConnectionMonitor:
        return self._connection

    def get_inbound_rtp(self) -> InboundRtpMonitor:
        return self._inbound_rtp

    @property
    def bitrate(self) -> Optional[float]:
        return self._inbound_rtp.bitrate

    def update(self) -> None:
        self.detectors.update()

    def create_sample(self) -> dict[str, Any]:
        return {
            "trackId": self.track_id,
            "kind": self.kind.value,
            "direction": self.direction.value,
            "muted": self.muted,
            "enabled": self.enabled,
            "readyState": self.ready_state,
            "inboundRtpId": self._inbound_rtp.id,
            "score": self.score.value,
        }


class OutboundTrackMonitor:
    """A local track sent over one or more outbound-rtp layers.

    Aggregates, refreshed every cycle by update():
        - bitrate and sending_packet_rate: sums over the layers
        - remote_received_packet_rate: sum over the remote-inbound reports
        - jitter and fraction_lost: means over the remote-inbound reports
    """

    direction = TrackDirection.OUTBOUND

    def __init__(self, connection: ConnectionMonitor, media_source: MediaSourceMonitor) -> None:
        self._connection = connection
        self._media_source = media_source
        self.track_id: str = media_source.track_identifier
        self.kind: MediaKind = media_source.kind
        self.score = CalculatedScore()
        self.app_data: dict[str, Any] = {}

        self.muted = False
        self.enabled = True
        self.ready_state = "live"

        self.bitrate: Optional[float] = None
        self.sending_packet_rate: Optional[float] = None
        self.remote_received_packet_rate: Optional[float] = None
        self.jitter: Optional[float] = None
        self.fraction_lost: Optional[float] = None

        self.detectors = Detectors(DryOutboundTrackDetector(self))
        if self.track_id == PROBATOR_TRACK_ID:
            self.detectors.clear()

    @property
    def connection(self) -> ConnectionMonitor:
        return self._connection

    def get_media_source(self) -> MediaSourceMonitor:
        return self._media_source

    def get_outbound_rtps(self) -> list[OutboundRtpMonitor]:
        """Layers fed by this track's media source, ordered by ssrc."""
        layers = self._connection.outbound_rtps.get_all_by_index(
            "media_source_id", self._media_source.id
        )
        return sorted(layers, key=lambda layer: layer.ssrc)

    @property
    def layers(self) -> dict[int, OutboundRtpMonitor]:
        return {layer.ssrc: layer for layer in self.get_outbound_rtps()}

    def get_highest_layer(self) -> Optional[OutboundRtpMonitor]:
        layers = self.get_outbound_rtps()
        if not layers:
            return None
        return max(layers, key=lambda layer: layer.bitrate or 0.0)

    def update(self) -> None:
        layers = self.get_outbound_rtps()
        remotes = [r for r in (layer.get_remote_inbound_rtp() for layer in layers) if r is not None]

        bitrates = [layer.bitrate for layer in layers if layer.bitrate is not None]
        self.bitrate = sum(bitrates) if bitrates else None
        packet_rates = [layer.packet_rate for layer in layers if layer.packet_rate is not None]
        self.sending_packet_rate = sum(packet_rates) if packet_rates else None
        received_rates = [r.packet_rate for r in remotes if r.packet_rate is not None]
        self.remote_received_packet_rate = sum(received_rates) if received_rates else None
        jitters = [r.stats.jitter for r in remotes if r.stats.jitter is not None]
        self.jitter = sum(jitters) / len(jitters) if jitters else None
        losses = [r.fraction_lost for r in remotes if r.fraction_lost is not None]
        self.fraction_lost = sum(losses) / len(losses) if losses else None

        self.detectors.update()

    def create_sample(self) -> dict[str, Any]:
        return {
            "trackId": self.track_id,
            "kind": self.kind.value,
            "direction": self.direction.value,
            "muted": self.muted,
            "enabled": self.enabled,
            "readyState": self.ready_state,
            "mediaSourceId": self._media_source.id,
            "outboundRtpIds": [layer.id for layer in self.get_outbound_rtps()],
            "score": self.score.value,
        }
