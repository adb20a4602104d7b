"""Detectors bound to a single media track.

Three state-machine shapes appear here:

    One-shot latched with timed activation (dry inbound/outbound track):
        a condition starts a timer on first observation; a reset
        condition clears the timer; if the condition holds for the full
        threshold the detector latches and emits exactly once.

    Hysteresis (playout discrepancy, audio desync):
        enter the active state when the metric crosses the high
        threshold and emit once; stay active while the metric remains at
        or above the low threshold; release below it.

    Edge (freezed video):
        emit when a freeze starts, open an issue when it ends.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rtc_monitor.detectors.base import Detector
from rtc_monitor.domain.enums import EventType, IssueType
from rtc_monitor.foundation.clock import now_ms

if TYPE_CHECKING:
    from rtc_monitor.config import (
        AudioDesyncDetectorConfig,
        DetectorConfig,
        DryTrackDetectorConfig,
        PlayoutDiscrepancyDetectorConfig,
    )
    from rtc_monitor.monitors.tracks import InboundTrackMonitor, OutboundTrackMonitor


# ── Timed latched ────────────────────────────────────────────────────────────

class DryInboundTrackDetector(Detector):
    """No byte has ever arrived on the track although the sender is not paused."""

    name = "dry-inbound-track-detector"

    def __init__(self, track: InboundTrackMonitor) -> None:
        self._track = track
        self._activated_at: Optional[float] = None
        self.triggered = False

    @property
    def _config(self) -> DryTrackDetectorConfig:
        return self._track.connection.config.dry_inbound_track

    def update(self) -> None:
        config = self._config
        if self.triggered or config.disabled:
            return
        if self._track.get_inbound_rtp().stats.bytes_received != 0:
            return
        if self._track.remote_outbound_track_paused:
            self._activated_at = None
            return

        now = now_ms()
        if self._activated_at is None:
            self._activated_at = now
        duration = now - self._activated_at
        if duration < config.threshold_in_ms:
            return

        self.triggered = True
        connection = self._track.connection
        connection.channels.emit(
            EventType.DRY_INBOUND_TRACK,
            connection.connection_id,
            track_id=self._track.track_id,
            duration=duration,
        )
        if config.create_issue:
            connection.channels.add_issue(
                IssueType.DRY_INBOUND_TRACK,
                trackId=self._track.track_id,
                duration=duration,
            )


class DryOutboundTrackDetector(Detector):
    """A live, unmuted local track that has not sent a single byte."""

    name = "dry-outbound-track-detector"

    def __init__(self, track: OutboundTrackMonitor) -> None:
        self._track = track
        self._activated_at: Optional[float] = None
        self.triggered = False

    @property
    def _config(self) -> DryTrackDetectorConfig:
        return self._track.connection.config.dry_outbound_track

    def update(self) -> None:
        config = self._config
        if self.triggered or config.disabled:
            return
        layers = self._track.get_outbound_rtps()
        if not layers or layers[0].stats.bytes_sent != 0:
            return
        if self._track.muted or self._track.ready_state != "live":
            self._activated_at = None
            return

        now = now_ms()
        if self._activated_at is None:
            self._activated_at = now
        duration = now - self._activated_at
        if duration < config.threshold_in_ms:
            return

        self.triggered = True
        connection = self._track.connection
        connection.channels.emit(
            EventType.DRY_OUTBOUND_TRACK,
            connection.connection_id,
            track_id=self._track.track_id,
            duration=duration,
        )
        if config.create_issue:
            connection.channels.add_issue(
                IssueType.DRY_OUTBOUND_TRACK,
                trackId=self._track.track_id,
                duration=duration,
            )


# ── Edge ─────────────────────────────────────────────────────────────────────

class FreezedVideoTrackDetector(Detector):
    """Flags the inbound stream as freezed while freezeCount keeps growing."""

    name = "freezed-video-track-detector"

    def __init__(self, track: InboundTrackMonitor) -> None:
        self._track = track
        self._last_freeze_count: Optional[int] = None
        self._started_freeze_at: Optional[float] = None

    @property
    def _config(self) -> DetectorConfig:
        return self._track.connection.config.freezed_video

    def update(self) -> None:
        inbound_rtp = self._track.get_inbound_rtp()
        freeze_count = inbound_rtp.stats.freeze_count
        if self._config.disabled or freeze_count is None:
            return
        if self._last_freeze_count is None:
            self._last_freeze_count = freeze_count
            return

        was_freezed = inbound_rtp.is_freezed
        inbound_rtp.is_freezed = freeze_count - self._last_freeze_count > 0
        self._last_freeze_count = freeze_count
        connection = self._track.connection

        if not was_freezed and inbound_rtp.is_freezed:
            self._started_freeze_at = now_ms()
            connection.channels.emit(
                EventType.FREEZED_VIDEO_TRACK,
                connection.connection_id,
                track_id=self._track.track_id,
                ssrc=inbound_rtp.ssrc,
            )
        elif was_freezed and not inbound_rtp.is_freezed:
            started_at = self._started_freeze_at
            self._started_freeze_at = None
            if not self._config.create_issue:
                return
            connection.channels.add_issue(
                IssueType.FREEZED_VIDEO_TRACK,
                peerConnectionId=connection.connection_id,
                trackId=self._track.track_id,
                ssrc=inbound_rtp.ssrc,
                duration=now_ms() - started_at if started_at is not None else 0.0,
            )


# ── Hysteresis ───────────────────────────────────────────────────────────────

class PlayoutDiscrepancyDetector(Detector):
    """More frames received than rendered over one interval."""

    name = "playout-discrepancy-detector"

    def __init__(self, track: InboundTrackMonitor) -> None:
        self._track = track
        self.active = False

    @property
    def _config(self) -> PlayoutDiscrepancyDetectorConfig:
        return self._track.connection.config.playout_discrepancy

    def update(self) -> None:
        config = self._config
        if config.disabled:
            return
        inbound_rtp = self._track.get_inbound_rtp()
        received = inbound_rtp.delta_frames_received
        rendered = inbound_rtp.delta_frames_rendered
        if received is None or rendered is None or inbound_rtp.ewma_fps is None:
            return

        frame_skew = received - rendered
        if self.active:
            if frame_skew < config.low_skew_threshold:
                self.active = False
            return
        if frame_skew < config.high_skew_threshold:
            return

        self.active = True
        connection = self._track.connection
        connection.channels.emit(
            EventType.PLAYOUT_DISCREPANCY,
            connection.connection_id,
            track_id=self._track.track_id,
            frame_skew=frame_skew,
            ewma_fps=inbound_rtp.ewma_fps,
        )
        if config.create_issue:
            connection.channels.add_issue(
                IssueType.PLAYOUT_DISCREPANCY,
                trackId=self._track.track_id,
                frameSkew=frame_skew,
                ewmaFps=inbound_rtp.ewma_fps,
            )


class AudioDesyncDetector(Detector):
    """Audio playout speeding up or slowing down to stay in sync.

    The fraction of samples the receiver inserted or removed over one
    interval is compared against an on and an off threshold.
    """

    name = "audio-desync-detector"

    def __init__(self, track: InboundTrackMonitor) -> None:
        self._track = track
        self._prev_corrected_samples: Optional[int] = None
        self.desync = False

    @property
    def _config(self) -> AudioDesyncDetectorConfig:
        return self._track.connection.config.audio_desync

    def update(self) -> None:
        config = self._config
        if config.disabled:
            return
        inbound_rtp = self._track.get_inbound_rtp()
        stats = inbound_rtp.stats
        corrected = (stats.inserted_samples_for_deceleration or 0) + (
            stats.removed_samples_for_acceleration or 0
        )
        previous = self._prev_corrected_samples
        self._prev_corrected_samples = corrected
        received = inbound_rtp.receiving_audio_samples or 0
        if previous is None or received < 1:
            return

        corrected_delta = max(0, corrected - previous)
        fractional_correction = corrected_delta / (corrected_delta + received)
        was_desync = self.desync
        if was_desync:
            self.desync = config.fractional_correction_alert_off_threshold < fractional_correction
        else:
            self.desync = config.fractional_correction_alert_on_threshold < fractional_correction
        if was_desync == self.desync:
            return

        connection = self._track.connection
        connection.channels.emit(
            EventType.AUDIO_DESYNC,
            connection.connection_id,
            track_id=self._track.track_id,
            state="desync" if self.desync else "sync",
            fractional_correction=fractional_correction,
        )
        if self.desync and config.create_issue:
            connection.channels.add_issue(
                IssueType.AUDIO_DESYNC,
                trackId=self._track.track_id,
                fractionalCorrection=fractional_correction,
            )
