"""DefaultScoreCalculator — penalty-based scores per track, connection and client.

Score bands:
    4.0 <= good < 5.0
    3.0 <= fair < 4.0
    2.0 <= poor < 3.0
    1.0 <= bad  < 2.0
    0.0 <= very bad < 1.0

Every unit pushes one raw score per cycle into its history and
publishes the linearly weighted mean once the history is long enough,
rounded to two decimals.  Penalties subtracted in a cycle are kept in
``score.detail`` keyed by reason; the client accumulates the reasons of
every child that contributed.

Design notes:
    - Audio tracks use the E-model MOS estimator.  The log10 bitrate
      curve some deployments use for audio is not implemented.
    - The client score is the weight-normalised mean over connections of
      ``track_score * connection_score / 5``.  A connection with no
      scored track counts as a perfect track score.
"""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Iterable, Optional

from rtc_monitor.config import ScoringConfig
from rtc_monitor.domain.enums import MediaKind
from rtc_monitor.scores.calculated import CalculatedScore
from rtc_monitor.scores.history import ScoreHistory
from rtc_monitor.scores.mos import calculate_audio_mos, calculate_video_mos

if TYPE_CHECKING:
    from rtc_monitor.core.client import ClientMonitor
    from rtc_monitor.core.connection import ConnectionMonitor
    from rtc_monitor.monitors.codec import CodecMonitor
    from rtc_monitor.monitors.tracks import InboundTrackMonitor, OutboundTrackMonitor

logger = logging.getLogger(__name__)

MAX_SCORE = 5.0
MIN_SCORE = 0.0
BITRATE_DIFF_WINDOW_LENGTH = 10


def _codec_flag(codec: Optional[CodecMonitor], flag: str) -> bool:
    if codec is None or not codec.stats.sdp_fmtp_line:
        return False
    return f"{flag}=1" in codec.stats.sdp_fmtp_line.replace(" ", "")


def _accumulate(into: dict[str, float], reasons: dict[str, float]) -> None:
    for reason, amount in reasons.items():
        into[reason] = into.get(reason, 0.0) + amount


class _BitrateVolatility:
    """Per outbound video track state for the volatile-bitrate penalty."""

    __slots__ = ("ewma_bitrate", "last_bitrate", "diff_squares")

    def __init__(self) -> None:
        self.ewma_bitrate: Optional[float] = None
        self.last_bitrate: Optional[float] = None
        self.diff_squares: list[float] = []


class DefaultScoreCalculator:
    """Computes every score of a client in one update() call."""

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self._config = config or ScoringConfig()
        self._volatility: dict[int, _BitrateVolatility] = {}
        self.current_reasons: dict[str, float] = {}
        self.total_reasons: dict[str, float] = {}

    def update(self, client: ClientMonitor) -> None:
        live_tracks: set[int] = set()
        for connection in client.connections:
            self.calculate_connection_score(connection)
            for inbound in connection.inbound_tracks.values():
                self.calculate_inbound_track_score(inbound)
            for outbound in connection.outbound_tracks.values():
                live_tracks.add(id(outbound))
                self.calculate_outbound_track_score(outbound)
        for key in [k for k in self._volatility if k not in live_tracks]:
            del self._volatility[key]
        self.calculate_client_score(client)

    # ── Publishing ───────────────────────────────────────────────────────

    def _publish(self, score: CalculatedScore, raw: float, reasons: dict[str, float]) -> Optional[float]:
        if score.history is None:
            score.history = ScoreHistory(
                max_length=self._config.history_max_length,
                min_length=self._config.history_min_length,
            )
        score.detail = reasons
        value = score.history.push(max(MIN_SCORE, min(MAX_SCORE, raw)))
        score.value = round(value, 2) if value is not None else None
        return score.value

    @staticmethod
    def _subtract(reasons: dict[str, float], base: float = MAX_SCORE) -> float:
        return max(MIN_SCORE, base - sum(reasons.values()))

    # ── Connection ───────────────────────────────────────────────────────

    def calculate_connection_score(self, connection: ConnectionMonitor) -> Optional[float]:
        reasons: dict[str, float] = {}
        rtt_in_ms = (connection.avg_rtt or 0.0) * 1000
        if rtt_in_ms > 300:
            reasons["very-high-rtt"] = 2.0
        elif rtt_in_ms > 150:
            reasons["high-rtt"] = 1.0

        fraction_lost = sum(
            inbound.fraction_lost or 0.0 for inbound in connection.inbound_rtps.values()
        ) + sum(
            remote.fraction_lost or 0.0 for remote in connection.remote_inbound_rtps.values()
        )
        if fraction_lost >= 0.2:
            reasons["high-packetloss"] = 5.0
        elif fraction_lost >= 0.05:
            reasons["high-packetloss"] = 2.0
        elif fraction_lost > 0:
            reasons["high-packetloss"] = 1.0

        return self._publish(connection.score, self._subtract(reasons), reasons)

    # ── Tracks ───────────────────────────────────────────────────────────

    def calculate_inbound_track_score(self, track: InboundTrackMonitor) -> Optional[float]:
        if not track.enabled or track.muted:
            track.score.reset()
            return None
        if track.kind == MediaKind.AUDIO:
            return self._inbound_audio(track)
        return self._inbound_video(track)

    def calculate_outbound_track_score(self, track: OutboundTrackMonitor) -> Optional[float]:
        if not track.enabled or track.muted:
            track.score.reset()
            self._volatility.pop(id(track), None)
            return None
        if track.kind == MediaKind.AUDIO:
            return self._outbound_audio(track)
        return self._outbound_video(track)

    def _inbound_audio(self, track: InboundTrackMonitor) -> Optional[float]:
        inbound_rtp = track.get_inbound_rtp()
        if inbound_rtp.bitrate is None:
            return track.score.value
        codec = inbound_rtp.get_codec()
        mos = calculate_audio_mos(
            bitrate=inbound_rtp.bitrate,
            packet_loss=(inbound_rtp.fraction_lost or 0.0) * 100,
            buffer_delay_in_ms=inbound_rtp.avg_jitter_buffer_delay_ms or 0.0,
            round_trip_time_in_ms=(track.connection.avg_rtt or 0.0) * 1000,
            dtx=track.dtx_mode,
            fec=_codec_flag(codec, "useinbandfec") or bool(inbound_rtp.stats.fec_packets_received),
        )
        return self._publish(track.score, mos, {})

    def _inbound_video(self, track: InboundTrackMonitor) -> Optional[float]:
        inbound_rtp = track.get_inbound_rtp()
        stats = inbound_rtp.stats
        if inbound_rtp.bitrate is None:
            return track.score.value

        base = MAX_SCORE
        if stats.frame_width and stats.frame_height and stats.frames_per_second:
            codec = inbound_rtp.get_codec()
            base = calculate_video_mos(
                bitrate=inbound_rtp.bitrate,
                width=stats.frame_width,
                height=stats.frame_height,
                buffer_delay_in_ms=inbound_rtp.avg_jitter_buffer_delay_ms or 0.0,
                round_trip_time_in_ms=(track.connection.avg_rtt or 0.0) * 1000,
                codec=codec.name if codec is not None else None,
                frame_rate=stats.frames_per_second,
                expected_frame_rate=inbound_rtp.expected_frames_per_second or stats.frames_per_second,
            )

        reasons: dict[str, float] = {}
        window = inbound_rtp.last_n_frames_per_sec
        if window and inbound_rtp.ewma_fps:
            rms = math.sqrt(sum(fps * fps for fps in window) / len(window))
            volatility = rms / inbound_rtp.ewma_fps
            if 1.1 < volatility < 1.2:
                reasons["volatile-fps"] = 1.0
            elif volatility > 1.2:
                reasons["volatile-fps"] = 2.0

        dropped = inbound_rtp.delta_frames_dropped
        rendered = inbound_rtp.delta_frames_rendered
        if dropped and rendered:
            fraction_dropped = dropped / (dropped + rendered)
            if 0.1 < fraction_dropped < 0.2:
                reasons["dropped-video-frames"] = 1.0
            elif fraction_dropped > 0.2:
                reasons["dropped-video-frames"] = 2.0

        if inbound_rtp.delta_corruption_probability:
            reasons["video-frame-corruptions"] = 2.0 * inbound_rtp.delta_corruption_probability

        return self._publish(track.score, self._subtract(reasons, base), reasons)

    def _outbound_audio(self, track: OutboundTrackMonitor) -> Optional[float]:
        layers = track.get_outbound_rtps()
        if not layers or layers[0].bitrate is None:
            return track.score.value
        outbound_rtp = layers[0]
        remote_inbound = outbound_rtp.get_remote_inbound_rtp()
        fraction_lost = remote_inbound.fraction_lost if remote_inbound is not None else None
        jitter = remote_inbound.stats.jitter if remote_inbound is not None else None
        codec = outbound_rtp.get_codec()
        mos = calculate_audio_mos(
            bitrate=outbound_rtp.bitrate,
            packet_loss=(fraction_lost or 0.0) * 100,
            buffer_delay_in_ms=(jitter or 0.0) * 1000,
            round_trip_time_in_ms=(track.connection.avg_rtt or 0.0) * 1000,
            dtx=_codec_flag(codec, "usedtx"),
            fec=_codec_flag(codec, "useinbandfec"),
        )
        return self._publish(track.score, mos, {})

    def _outbound_video(self, track: OutboundTrackMonitor) -> Optional[float]:
        highest = track.get_highest_layer()
        if highest is None:
            track.score.reset()
            return None
        reasons: dict[str, float] = {}

        target = highest.stats.target_bitrate
        if target:
            payload_bitrate = sum(layer.payload_bitrate or 0.0 for layer in track.get_outbound_rtps())
            if payload_bitrate:
                deviation = target - payload_bitrate
                percentage = deviation / target
                low_threshold = max(20000.0, target * 0.05)
                if 0 < deviation and low_threshold < deviation:
                    if 0.05 <= percentage < 0.15:
                        reasons["high-deviation-from-target-bitrate"] = 1.0
                    elif percentage >= 0.15:
                        reasons["high-deviation-from-target-bitrate"] = 2.0

        if highest.stats.quality_limitation_reason == "cpu":
            reasons["cpu-limitation"] = 2.0

        if highest.bitrate:
            state = self._volatility.setdefault(id(track), _BitrateVolatility())
            if not state.ewma_bitrate:
                state.ewma_bitrate = highest.bitrate
            else:
                state.ewma_bitrate = 0.9 * state.ewma_bitrate + 0.1 * highest.bitrate
            if state.last_bitrate:
                diff = abs(state.last_bitrate - highest.bitrate)
                state.diff_squares.append(diff * diff)
                del state.diff_squares[:-BITRATE_DIFF_WINDOW_LENGTH]
            if len(state.diff_squares) > 3:
                std_dev = math.sqrt(sum(state.diff_squares) / len(state.diff_squares))
                volatility = std_dev / state.ewma_bitrate
                if 0.1 < volatility < 0.2:
                    reasons["high-volatile-bitrate"] = 1.0
                elif volatility > 0.2:
                    reasons["high-volatile-bitrate"] = 2.0
            state.last_bitrate = highest.bitrate

        return self._publish(track.score, self._subtract(reasons), reasons)

    # ── Client ───────────────────────────────────────────────────────────

    def calculate_client_score(self, client: ClientMonitor) -> Optional[float]:
        self.current_reasons = {}
        total_score = 0.0
        total_weight = 0.0
        scored_connections = 0

        for connection in client.connections:
            connection_score = connection.score
            if connection_score.value is None:
                continue
            scored_connections += 1
            track_total = 0.0
            track_weight = 0.0
            scored_tracks = 0
            for track in _tracks_of(connection):
                if track.score.value is None:
                    continue
                track_total += track.score.value * track.score.weight
                track_weight += track.score.weight
                scored_tracks += 1
                _accumulate(self.current_reasons, track.score.detail)

            weighted_track_score = track_total / max(track_weight, 1) if scored_tracks else MAX_SCORE
            normalised_connection = max(MIN_SCORE, connection_score.value) / MAX_SCORE
            total_score += weighted_track_score * normalised_connection * connection_score.weight
            total_weight += connection_score.weight
            _accumulate(self.current_reasons, connection_score.detail)

        _accumulate(self.total_reasons, self.current_reasons)
        if not scored_connections:
            return client.score.value
        raw = total_score / max(total_weight, 1)
        logger.debug("Client raw score %.2f (reasons=%s)", raw, self.current_reasons)
        return self._publish(client.score, raw, dict(self.current_reasons))


def _tracks_of(connection: ConnectionMonitor) -> Iterable[InboundTrackMonitor | OutboundTrackMonitor]:
    yield from connection.inbound_tracks.values()
    yield from connection.outbound_tracks.values()
