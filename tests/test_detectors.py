"""Tests for the detector engine and every built-in detector.

Detectors are driven through ConnectionMonitor.accept() so each test
exercises the real cycle order.  Wall-clock time is patched on the
detector modules' now_ms.
"""

from __future__ import annotations

import logging
from typing import Optional
from unittest.mock import patch

import pytest

from rtc_monitor.config import (
    AudioDesyncDetectorConfig,
    DetectorConfig,
    DryTrackDetectorConfig,
    MonitorConfig,
    PlayoutDiscrepancyDetectorConfig,
)
from rtc_monitor.core.connection import ConnectionMonitor
from rtc_monitor.detectors.base import Detector, Detectors
from rtc_monitor.domain.enums import ConnectionState, EventType, IssueType

from tests.test_classifier import (
    _candidate_pair,
    _inbound_rtp,
    _media_playout,
    _media_source,
    _outbound_rtp,
    _transport,
)

TRACK_CLOCK = "rtc_monitor.detectors.track.now_ms"
CONNECTION_CLOCK = "rtc_monitor.detectors.connection.now_ms"
COORDINATOR_CLOCK = "rtc_monitor.core.connection.now_ms"


def _events(connection: ConnectionMonitor, event_type: EventType) -> list:
    return [e for e in connection.channels.events.backlog if e.type == event_type]


def _issues(connection: ConnectionMonitor, issue_type: IssueType) -> list:
    return [i for i in connection.channels.issues.backlog if i.type == issue_type]


def _accept_at(connection: ConnectionMonitor, clock: str, now: float, batch: list) -> None:
    with patch(clock, return_value=now):
        connection.accept(batch)


# ── Engine ───────────────────────────────────────────────────────────────────

class _Counting(Detector):
    name = "counting"

    def __init__(self) -> None:
        self.calls = 0

    def update(self) -> None:
        self.calls += 1


class _Exploding(Detector):
    name = "exploding"

    def update(self) -> None:
        raise RuntimeError("boom")


class TestDetectors:
    def test_failure_is_isolated_and_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        before, after = _Counting(), _Counting()
        detectors = Detectors(before, _Exploding(), after)
        with caplog.at_level(logging.WARNING, logger="rtc_monitor.detectors.base"):
            detectors.update()
        assert before.calls == 1
        assert after.calls == 1
        assert "exploding" in caplog.text

    def test_add_remove_clear(self) -> None:
        a, b = _Counting(), _Counting()
        detectors = Detectors(a)
        detectors.add(b)
        assert len(detectors) == 2
        detectors.remove(a)
        assert list(detectors) == [b]
        detectors.clear()
        assert len(detectors) == 0
        detectors.update()
        assert b.calls == 0


# ── Dry tracks ───────────────────────────────────────────────────────────────

class TestDryInboundTrack:
    def _connection(self, **config) -> ConnectionMonitor:
        return ConnectionMonitor(config=MonitorConfig(
            dry_inbound_track=DryTrackDetectorConfig(threshold_in_ms=5000, **config),
        ))

    def test_emits_once_after_threshold(self) -> None:
        connection = self._connection()
        for now in (0, 4000):
            _accept_at(connection, TRACK_CLOCK, now, [_inbound_rtp(timestamp=1000 + now, bytesReceived=0)])
        assert _events(connection, EventType.DRY_INBOUND_TRACK) == []

        _accept_at(connection, TRACK_CLOCK, 6000, [_inbound_rtp(timestamp=7000, bytesReceived=0)])
        events = _events(connection, EventType.DRY_INBOUND_TRACK)
        issues = _issues(connection, IssueType.DRY_INBOUND_TRACK)
        assert len(events) == 1
        assert events[0].payload == {"track_id": "remote-audio", "duration": 6000}
        assert len(issues) == 1
        assert issues[0].payload == {"trackId": "remote-audio", "duration": 6000}

        _accept_at(connection, TRACK_CLOCK, 9000, [_inbound_rtp(timestamp=10000, bytesReceived=0)])
        assert len(_events(connection, EventType.DRY_INBOUND_TRACK)) == 1
        assert len(_issues(connection, IssueType.DRY_INBOUND_TRACK)) == 1

    def test_remote_pause_resets_timer(self) -> None:
        connection = self._connection()
        _accept_at(connection, TRACK_CLOCK, 0, [_inbound_rtp(timestamp=1000, bytesReceived=0)])
        track = connection.inbound_tracks["remote-audio"]

        track.remote_outbound_track_paused = True
        _accept_at(connection, TRACK_CLOCK, 3000, [_inbound_rtp(timestamp=2000, bytesReceived=0)])
        track.remote_outbound_track_paused = False
        _accept_at(connection, TRACK_CLOCK, 4000, [_inbound_rtp(timestamp=3000, bytesReceived=0)])
        _accept_at(connection, TRACK_CLOCK, 8000, [_inbound_rtp(timestamp=4000, bytesReceived=0)])
        assert _events(connection, EventType.DRY_INBOUND_TRACK) == []

        _accept_at(connection, TRACK_CLOCK, 9000, [_inbound_rtp(timestamp=5000, bytesReceived=0)])
        assert len(_events(connection, EventType.DRY_INBOUND_TRACK)) == 1

    def test_flowing_track_never_fires(self) -> None:
        connection = self._connection()
        for i, now in enumerate((0, 6000, 12000)):
            _accept_at(connection, TRACK_CLOCK, now, [_inbound_rtp(timestamp=1000 + now, bytesReceived=100 * (i + 1))])
        assert _events(connection, EventType.DRY_INBOUND_TRACK) == []

    def test_issue_creation_can_be_disabled(self) -> None:
        connection = self._connection(create_issue=False)
        for now in (0, 6000):
            _accept_at(connection, TRACK_CLOCK, now, [_inbound_rtp(timestamp=1000 + now, bytesReceived=0)])
        assert len(_events(connection, EventType.DRY_INBOUND_TRACK)) == 1
        assert _issues(connection, IssueType.DRY_INBOUND_TRACK) == []

    def test_disabled_detector_stays_silent(self) -> None:
        connection = self._connection(disabled=True)
        for now in (0, 6000):
            _accept_at(connection, TRACK_CLOCK, now, [_inbound_rtp(timestamp=1000 + now, bytesReceived=0)])
        assert _events(connection, EventType.DRY_INBOUND_TRACK) == []

    def test_probator_track_has_no_detectors(self) -> None:
        connection = self._connection()
        connection.accept([_inbound_rtp(trackIdentifier="probator", bytesReceived=0)])
        assert len(connection.inbound_tracks["probator"].detectors) == 0


class TestDryOutboundTrack:
    def _batch(self, timestamp: float, bytes_sent: int) -> list:
        return [
            _media_source(timestamp=timestamp),
            _outbound_rtp(timestamp=timestamp, bytesSent=bytes_sent),
        ]

    def test_emits_once_after_threshold(self) -> None:
        connection = ConnectionMonitor()
        _accept_at(connection, TRACK_CLOCK, 0, self._batch(1000, 0))
        _accept_at(connection, TRACK_CLOCK, 5000, self._batch(2000, 0))
        _accept_at(connection, TRACK_CLOCK, 7000, self._batch(3000, 0))
        events = _events(connection, EventType.DRY_OUTBOUND_TRACK)
        assert len(events) == 1
        assert events[0].payload["track_id"] == "local-video"
        assert events[0].payload["duration"] == 5000

    def test_muted_track_resets_timer(self) -> None:
        connection = ConnectionMonitor()
        _accept_at(connection, TRACK_CLOCK, 0, self._batch(1000, 0))
        connection.outbound_tracks["local-video"].muted = True
        _accept_at(connection, TRACK_CLOCK, 5000, self._batch(2000, 0))
        connection.outbound_tracks["local-video"].muted = False
        _accept_at(connection, TRACK_CLOCK, 6000, self._batch(3000, 0))
        assert _events(connection, EventType.DRY_OUTBOUND_TRACK) == []

    def test_ended_track_resets_timer(self) -> None:
        connection = ConnectionMonitor()
        _accept_at(connection, TRACK_CLOCK, 0, self._batch(1000, 0))
        connection.outbound_tracks["local-video"].ready_state = "ended"
        _accept_at(connection, TRACK_CLOCK, 9000, self._batch(2000, 0))
        assert _events(connection, EventType.DRY_OUTBOUND_TRACK) == []


# ── Video ────────────────────────────────────────────────────────────────────

def _video(timestamp: float, **fields) -> dict:
    return _inbound_rtp(
        id="IT-video", ssrc=2222, kind="video", trackIdentifier="remote-video",
        timestamp=timestamp, framesPerSecond=30, **fields,
    )


class TestPlayoutDiscrepancy:
    def _connection(self) -> ConnectionMonitor:
        return ConnectionMonitor(config=MonitorConfig(
            playout_discrepancy=PlayoutDiscrepancyDetectorConfig(high_skew_threshold=10, low_skew_threshold=3),
        ))

    def _feed(self, connection: ConnectionMonitor, skews: list[int]) -> None:
        received = rendered = 0
        connection.accept([_video(1000, framesReceived=0, framesRendered=0)])
        for i, skew in enumerate(skews, start=2):
            received += 25
            rendered += 25 - skew
            connection.accept([_video(1000 * i, framesReceived=received, framesRendered=rendered)])

    def test_enters_on_high_skew_and_releases_on_low(self) -> None:
        connection = self._connection()
        self._feed(connection, [15])
        events = _events(connection, EventType.PLAYOUT_DISCREPANCY)
        assert len(events) == 1
        assert events[0].payload["frame_skew"] == 15
        assert events[0].payload["ewma_fps"] == 30
        issues = _issues(connection, IssueType.PLAYOUT_DISCREPANCY)
        assert issues[0].payload == {"trackId": "remote-video", "frameSkew": 15, "ewmaFps": 30}

        detector = next(d for d in connection.inbound_tracks["remote-video"].detectors
                        if d.name == "playout-discrepancy-detector")
        assert detector.active

        connection.accept([_video(3000, framesReceived=50, framesRendered=33)])
        assert not detector.active
        assert len(_events(connection, EventType.PLAYOUT_DISCREPANCY)) == 1

    def test_held_above_high_never_re_emits(self) -> None:
        connection = self._connection()
        self._feed(connection, [15, 20, 12, 15])
        assert len(_events(connection, EventType.PLAYOUT_DISCREPANCY)) == 1

    def test_between_thresholds_keeps_state(self) -> None:
        connection = self._connection()
        self._feed(connection, [15, 5, 5, 15])
        assert len(_events(connection, EventType.PLAYOUT_DISCREPANCY)) == 1

    def test_release_then_reenter_emits_again(self) -> None:
        connection = self._connection()
        self._feed(connection, [15, 2, 15])
        assert len(_events(connection, EventType.PLAYOUT_DISCREPANCY)) == 2


class TestFreezedVideo:
    def test_freeze_event_on_rising_edge_issue_on_falling(self) -> None:
        connection = ConnectionMonitor()
        connection.accept([_video(1000, freezeCount=0)])
        inbound = connection.inbound_rtps.get("IT-video")
        assert inbound.is_freezed is False

        with patch(TRACK_CLOCK, return_value=10_000):
            connection.accept([_video(2000, freezeCount=2)])
        assert inbound.is_freezed is True
        events = _events(connection, EventType.FREEZED_VIDEO_TRACK)
        assert len(events) == 1
        assert events[0].payload == {"track_id": "remote-video", "ssrc": 2222}

        with patch(TRACK_CLOCK, return_value=12_500):
            connection.accept([_video(3000, freezeCount=2)])
        assert inbound.is_freezed is False
        assert len(_events(connection, EventType.FREEZED_VIDEO_TRACK)) == 1
        issues = _issues(connection, IssueType.FREEZED_VIDEO_TRACK)
        assert len(issues) == 1
        assert issues[0].payload["duration"] == 2500
        assert issues[0].payload["peerConnectionId"] == connection.connection_id

    def test_existing_freeze_count_not_reported(self) -> None:
        connection = ConnectionMonitor()
        connection.accept([_video(1000, freezeCount=7)])
        connection.accept([_video(2000, freezeCount=7)])
        assert _events(connection, EventType.FREEZED_VIDEO_TRACK) == []

    def test_repeated_snapshot_keeps_freeze_open(self) -> None:
        connection = ConnectionMonitor()
        connection.accept([_video(1000, freezeCount=0)])
        with patch(TRACK_CLOCK, return_value=10_000):
            connection.accept([_video(2000, freezeCount=2)])
        with patch(TRACK_CLOCK, return_value=12_500):
            connection.accept([_video(2000, freezeCount=2)])

        assert connection.inbound_rtps.get("IT-video").is_freezed is True
        assert connection.ingest_stats["inbound-rtp"].stale == 1
        assert len(_events(connection, EventType.FREEZED_VIDEO_TRACK)) == 1
        assert _issues(connection, IssueType.FREEZED_VIDEO_TRACK) == []


# ── Audio ────────────────────────────────────────────────────────────────────

class TestAudioDesync:
    def _batch(self, timestamp: float, total: int, inserted: int) -> list:
        return [_inbound_rtp(
            timestamp=timestamp, totalSamplesReceived=total,
            insertedSamplesForDeceleration=inserted, removedSamplesForAcceleration=0,
        )]

    def test_hysteresis_between_on_and_off(self) -> None:
        connection = ConnectionMonitor(config=MonitorConfig(
            audio_desync=AudioDesyncDetectorConfig(
                fractional_correction_alert_on_threshold=0.3,
                fractional_correction_alert_off_threshold=0.15,
            ),
        ))
        connection.accept(self._batch(1000, 0, 0))
        connection.accept(self._batch(2000, 48000, 30000))   # 30000 / 78000 ~ 0.38
        connection.accept(self._batch(3000, 96000, 40000))   # 10000 / 58000 ~ 0.17
        connection.accept(self._batch(4000, 144000, 40000))  # 0

        events = _events(connection, EventType.AUDIO_DESYNC)
        assert [e.payload["state"] for e in events] == ["desync", "sync"]
        assert events[0].payload["fractional_correction"] == pytest.approx(30000 / 78000)
        assert len(_issues(connection, IssueType.AUDIO_DESYNC)) == 1


class TestSynthesizedSamples:
    def test_reports_every_cycle_opens_one_issue(self) -> None:
        connection = ConnectionMonitor()
        for i, synthesized in enumerate((0.0, 0.5, 1.0, 1.0, 1.5), start=1):
            connection.accept([_media_playout(timestamp=1000 * i, synthesizedSamplesDuration=synthesized)])

        events = _events(connection, EventType.SYNTHESIZED_SAMPLES)
        assert [e.payload["synthesized_samples_duration"] for e in events] == [0.5, 0.5, 0.5]
        issues = _issues(connection, IssueType.SYNTHESIZED_SAMPLES)
        assert len(issues) == 2
        assert issues[0].payload["mediaPlayoutId"] == "AP01"

    def test_repeated_snapshot_not_reported_again(self) -> None:
        connection = ConnectionMonitor()
        for timestamp, synthesized in ((1000, 0.0), (2000, 0.5), (2000, 0.5)):
            connection.accept([_media_playout(timestamp=timestamp, synthesizedSamplesDuration=synthesized)])

        assert connection.ingest_stats["media-playout"].stale == 1
        assert len(_events(connection, EventType.SYNTHESIZED_SAMPLES)) == 1
        assert len(_issues(connection, IssueType.SYNTHESIZED_SAMPLES)) == 1


# ── Connection level ─────────────────────────────────────────────────────────

class TestCongestion:
    def _batch(self, timestamp: float, reason: str, outgoing: Optional[float]) -> list:
        return [
            _outbound_rtp(timestamp=timestamp, qualityLimitationReason=reason),
            _transport(timestamp=timestamp),
            _candidate_pair(timestamp=timestamp, availableOutgoingBitrate=outgoing),
        ]

    def test_event_on_rising_edge_with_bitrates(self) -> None:
        connection = ConnectionMonitor()
        connection.accept(self._batch(1000, "none", 2_000_000))
        connection.accept(self._batch(2000, "bandwidth", 600_000))
        connection.accept(self._batch(3000, "bandwidth", 500_000))

        events = _events(connection, EventType.CONGESTION)
        assert len(events) == 1
        payload = events[0].payload
        assert payload["available_outgoing_bitrate_before"] == 2_000_000
        assert payload["available_outgoing_bitrate_after"] == 600_000
        assert payload["highest_seen_available_outgoing_bitrate"] == 2_000_000
        assert len(_issues(connection, IssueType.CONGESTION)) == 1

    def test_disabled(self) -> None:
        connection = ConnectionMonitor(config=MonitorConfig(congestion=DetectorConfig(disabled=True)))
        connection.accept(self._batch(1000, "bandwidth", 1.0))
        assert _events(connection, EventType.CONGESTION) == []


class TestCpuPerformance:
    def test_event_on_each_change(self) -> None:
        connection = ConnectionMonitor()
        connection.accept([_outbound_rtp(timestamp=1000, qualityLimitationReason="cpu")])
        connection.accept([_outbound_rtp(timestamp=2000, qualityLimitationReason="cpu")])
        connection.accept([_outbound_rtp(timestamp=3000, qualityLimitationReason="none")])
        events = _events(connection, EventType.CPU_LIMITATION)
        assert [e.payload["state"] for e in events] == ["on", "off"]
        assert len(_issues(connection, IssueType.CPU_LIMITATION)) == 1


class TestLongPcConnectionEstablishment:
    def test_fires_once_and_rearms_on_connected(self) -> None:
        connection = ConnectionMonitor()
        with patch(COORDINATOR_CLOCK, return_value=0):
            connection.set_connection_state(ConnectionState.CONNECTING)

        _accept_at(connection, CONNECTION_CLOCK, 2000, [])
        assert _events(connection, EventType.LONG_PC_CONNECTION_ESTABLISHMENT) == []

        _accept_at(connection, CONNECTION_CLOCK, 3500, [])
        _accept_at(connection, CONNECTION_CLOCK, 5000, [])
        events = _events(connection, EventType.LONG_PC_CONNECTION_ESTABLISHMENT)
        assert len(events) == 1
        assert events[0].payload["duration"] == 3500
        issues = _issues(connection, IssueType.LONG_PC_CONNECTION_ESTABLISHMENT)
        assert issues[0].payload == {"peerConnectionId": connection.connection_id, "duration": 3500}

        with patch(COORDINATOR_CLOCK, return_value=6000):
            connection.set_connection_state(ConnectionState.CONNECTED)
        _accept_at(connection, CONNECTION_CLOCK, 6000, [])
        with patch(COORDINATOR_CLOCK, return_value=10_000):
            connection.set_connection_state(ConnectionState.CONNECTING)
        _accept_at(connection, CONNECTION_CLOCK, 14_000, [])
        assert len(_events(connection, EventType.LONG_PC_CONNECTION_ESTABLISHMENT)) == 2
