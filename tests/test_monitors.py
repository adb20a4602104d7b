"""Tests for the per-entity stat monitors."""

from __future__ import annotations

import pytest

from rtc_monitor.core.connection import ConnectionMonitor
from rtc_monitor.domain.records import (
    InboundRtpStats,
    MediaPlayoutStats,
    OutboundRtpStats,
    RemoteInboundRtpStats,
)
from rtc_monitor.monitors.base import bitrate, fraction_lost
from rtc_monitor.monitors.inbound_rtp import InboundRtpMonitor
from rtc_monitor.monitors.media import MediaPlayoutMonitor
from rtc_monitor.monitors.outbound_rtp import OutboundRtpMonitor
from rtc_monitor.monitors.remote_rtp import RemoteInboundRtpMonitor

from tests.test_classifier import (
    _candidate_pair,
    _codec,
    _inbound_rtp,
    _local_candidate,
    _media_playout,
    _outbound_rtp,
    _remote_candidate,
    _remote_inbound_rtp,
    _remote_outbound_rtp,
    _transport,
)


@pytest.fixture
def connection() -> ConnectionMonitor:
    return ConnectionMonitor(connection_id="pc-1")


def _inbound(**kw) -> InboundRtpStats:
    return InboundRtpStats.model_validate(_inbound_rtp(**kw))


def _outbound(**kw) -> OutboundRtpStats:
    return OutboundRtpStats.model_validate(_outbound_rtp(**kw))


class TestDeltaHelpers:
    def test_bitrate_from_byte_counters(self) -> None:
        assert bitrate(9000, 1000, 1.0) == 64000

    def test_bitrate_floored_at_zero(self) -> None:
        assert bitrate(1000, 9000, 1.0) == 0.0

    def test_bitrate_unknown_counter(self) -> None:
        assert bitrate(None, 1000, 1.0) is None

    def test_fraction_lost(self) -> None:
        assert fraction_lost(5, 95) == pytest.approx(0.05)
        assert fraction_lost(0, 0) == 0.0
        assert fraction_lost(None, 10) is None


class TestInboundRtpMonitor:
    def test_receiving_bitrate(self, connection: ConnectionMonitor) -> None:
        monitor = InboundRtpMonitor(connection, _inbound(timestamp=0, bytesReceived=1000))
        assert monitor.accept(_inbound(timestamp=1000, bytesReceived=9000))
        assert monitor.bitrate == 64000
        assert monitor.delta_bytes_received == 8000

    def test_stale_snapshot_changes_nothing(self, connection: ConnectionMonitor) -> None:
        monitor = InboundRtpMonitor(connection, _inbound(timestamp=0, bytesReceived=1000))
        monitor.accept(_inbound(timestamp=1000, bytesReceived=9000, packetsReceived=10))
        before = dict(vars(monitor))

        assert monitor.accept(_inbound(timestamp=1000, bytesReceived=50000)) is False
        assert monitor.accept(_inbound(timestamp=500, bytesReceived=70000)) is False

        assert monitor.stats.bytes_received == 9000
        assert monitor.bitrate == 64000
        assert vars(monitor) == before

    def test_jitter_buffer_delay_average(self, connection: ConnectionMonitor) -> None:
        monitor = InboundRtpMonitor(
            connection, _inbound(timestamp=0, jitterBufferDelay=1.0, jitterBufferEmittedCount=100)
        )
        monitor.accept(_inbound(timestamp=1000, jitterBufferDelay=3.0, jitterBufferEmittedCount=200))
        # (3.0 - 1.0) / (200 - 100) * 1000
        assert monitor.avg_jitter_buffer_delay_ms == pytest.approx(20.0)

    def test_jitter_buffer_delay_zero_emitted(self, connection: ConnectionMonitor) -> None:
        monitor = InboundRtpMonitor(
            connection, _inbound(timestamp=0, jitterBufferDelay=1.0, jitterBufferEmittedCount=100)
        )
        monitor.accept(_inbound(timestamp=1000, jitterBufferDelay=1.5, jitterBufferEmittedCount=100))
        assert monitor.avg_jitter_buffer_delay_ms == pytest.approx(500.0)

    def test_packet_loss_fraction(self, connection: ConnectionMonitor) -> None:
        monitor = InboundRtpMonitor(connection, _inbound(timestamp=0, packetsLost=0, packetsReceived=0))
        monitor.accept(_inbound(timestamp=1000, packetsLost=10, packetsReceived=90))
        assert monitor.delta_packets_lost == 10
        assert monitor.fraction_lost == pytest.approx(0.1)

    def test_video_frame_fields(self, connection: ConnectionMonitor) -> None:
        base = dict(kind="video", trackIdentifier="remote-video", frameWidth=640, frameHeight=360)
        monitor = InboundRtpMonitor(
            connection,
            _inbound(timestamp=0, framesReceived=0, framesRendered=0, bytesReceived=0, **base),
        )
        assert monitor.expected_frames_per_second == 30.0
        monitor.accept(_inbound(
            timestamp=1000, framesReceived=30, framesRendered=28, bytesReceived=100000,
            framesPerSecond=30, **base,
        ))
        monitor.accept(_inbound(
            timestamp=2000, framesReceived=50, framesRendered=48, bytesReceived=200000,
            framesPerSecond=20, **base,
        ))
        assert monitor.delta_frames_received == 20
        assert monitor.delta_frames_rendered == 20
        assert list(monitor.last_n_frames_per_sec) == [30, 20]
        assert monitor.avg_frames_per_sec == pytest.approx(25.0)
        assert monitor.ewma_fps == pytest.approx(0.9 * 30 + 0.1 * 20)
        assert monitor.fps_volatility == pytest.approx(5.0 / 25.0)
        assert monitor.bit_per_pixel == pytest.approx(800000 / (640 * 360))

    def test_corruption_probability_delta(self, connection: ConnectionMonitor) -> None:
        monitor = InboundRtpMonitor(
            connection, _inbound(timestamp=0, totalCorruptionProbability=0.0, corruptionMeasurements=0)
        )
        monitor.accept(_inbound(timestamp=1000, totalCorruptionProbability=0.6, corruptionMeasurements=3))
        assert monitor.delta_corruption_probability == pytest.approx(0.2)

    def test_create_sample_has_no_derived_fields(self, connection: ConnectionMonitor) -> None:
        monitor = InboundRtpMonitor(connection, _inbound(timestamp=0, bytesReceived=1000))
        monitor.accept(_inbound(timestamp=1000, bytesReceived=9000))
        sample = monitor.create_sample()
        assert sample["bytesReceived"] == 9000
        assert sample["ssrc"] == 1111
        assert "bitrate" not in sample
        assert all(value is not None for value in sample.values())


class TestOutboundRtpMonitor:
    def test_rates(self, connection: ConnectionMonitor) -> None:
        monitor = OutboundRtpMonitor(
            connection,
            _outbound(timestamp=0, bytesSent=0, headerBytesSent=0, packetsSent=0, retransmittedBytesSent=0),
        )
        monitor.accept(_outbound(
            timestamp=2000, bytesSent=25000, headerBytesSent=1000, packetsSent=100,
            retransmittedBytesSent=4000, frameWidth=100, frameHeight=100, framesPerSecond=10,
        ))
        assert monitor.bitrate == pytest.approx(100000)
        assert monitor.packet_rate == pytest.approx(50)
        assert monitor.payload_bitrate == pytest.approx(20000 * 8 / 2)
        assert monitor.bit_per_pixel == pytest.approx(100000 / (100 * 100 * 10))

    def test_stability_score_needs_half_window(self, connection: ConnectionMonitor) -> None:
        connection.accept([_remote_inbound_rtp(timestamp=1000, packetsLost=0)])
        monitor = OutboundRtpMonitor(connection, _outbound(timestamp=0, packetsSent=0), stability_window_length=4)
        monitor.accept(_outbound(timestamp=1000, packetsSent=100))

        assert monitor.update_stability_score(0.1, 0.1) is None
        assert monitor.update_stability_score(0.1, 0.1) == pytest.approx(1.0)

    def test_stability_score_latency_factor(self, connection: ConnectionMonitor) -> None:
        connection.accept([_remote_inbound_rtp(timestamp=1000, packetsLost=0)])
        monitor = OutboundRtpMonitor(connection, _outbound(timestamp=0, packetsSent=0), stability_window_length=2)
        monitor.accept(_outbound(timestamp=1000, packetsSent=100))
        # |0.15 - 0.10| = 0.05 -> latency factor 0.5
        score = monitor.update_stability_score(0.15, 0.10)
        assert score == pytest.approx((0.5 * 0.33 + 1.0 * 0.67) ** 2)

    def test_stability_score_without_remote_report(self, connection: ConnectionMonitor) -> None:
        monitor = OutboundRtpMonitor(connection, _outbound(timestamp=0), stability_window_length=2)
        assert monitor.update_stability_score(0.1, 0.1) is None


class TestRemoteRtpMonitors:
    def test_remote_inbound_uses_reported_fraction_lost(self, connection: ConnectionMonitor) -> None:
        stats = RemoteInboundRtpStats.model_validate(_remote_inbound_rtp(timestamp=0, packetsLost=0))
        monitor = RemoteInboundRtpMonitor(connection, stats)
        monitor.accept(RemoteInboundRtpStats.model_validate(
            _remote_inbound_rtp(timestamp=1000, packetsLost=4, packetsReceived=96, fractionLost=0.25)
        ))
        assert monitor.fraction_lost == 0.25
        assert monitor.delta_packets_lost == 4

    def test_remote_inbound_computes_fraction_lost(self, connection: ConnectionMonitor) -> None:
        stats = RemoteInboundRtpStats.model_validate(
            _remote_inbound_rtp(timestamp=0, packetsLost=0, packetsReceived=0)
        )
        monitor = RemoteInboundRtpMonitor(connection, stats)
        monitor.accept(RemoteInboundRtpStats.model_validate(
            _remote_inbound_rtp(timestamp=1000, packetsLost=4, packetsReceived=96)
        ))
        assert monitor.fraction_lost == pytest.approx(0.04)
        assert monitor.packet_rate == pytest.approx(96)


class TestMediaPlayoutMonitor:
    def test_synthesized_delta(self, connection: ConnectionMonitor) -> None:
        monitor = MediaPlayoutMonitor(
            connection,
            MediaPlayoutStats.model_validate(_media_playout(timestamp=0, synthesizedSamplesDuration=1.0)),
        )
        monitor.accept(MediaPlayoutStats.model_validate(
            _media_playout(timestamp=1000, synthesizedSamplesDuration=1.25, totalSamplesDuration=2.0)
        ))
        assert monitor.delta_synthesized_samples_duration == pytest.approx(0.25)
        assert "synthesized-samples-detector" in monitor.detectors.names


class TestCrossReferences:
    def test_inbound_graph(self, connection: ConnectionMonitor) -> None:
        connection.accept([
            _codec(),
            _inbound_rtp(codecId="CO01", transportId="T01", remoteId="RO01"),
            _remote_outbound_rtp(),
            _transport(),
            _candidate_pair(),
            _local_candidate(),
            _remote_candidate(),
        ])
        inbound = connection.inbound_rtps.get("IT01")
        assert inbound.get_codec() is connection.codecs.get("CO01")
        assert inbound.get_transport() is connection.transports.get("T01")
        assert inbound.get_remote_outbound_rtp() is connection.remote_outbound_rtps.get("RO01")
        assert inbound.get_track() is connection.inbound_tracks["remote-audio"]
        assert connection.remote_outbound_rtps.get("RO01").get_inbound_rtp() is inbound

        pair = connection.transports.get("T01").get_selected_candidate_pair()
        assert pair is connection.candidate_pairs.get("CP01")
        assert pair.get_local_candidate().protocol == "udp"
        assert pair.get_remote_candidate().candidate_type == "srflx"

    def test_counterpart_found_by_ssrc(self, connection: ConnectionMonitor) -> None:
        connection.accept([_outbound_rtp(), _remote_inbound_rtp(localId=None)])
        outbound = connection.outbound_rtps.get("OT01")
        remote = connection.remote_inbound_rtps.get("RI01")
        assert outbound.get_remote_inbound_rtp() is remote
        assert remote.get_outbound_rtp() is outbound

    def test_missing_reference_is_none(self, connection: ConnectionMonitor) -> None:
        connection.accept([_inbound_rtp(codecId="CO-missing")])
        inbound = connection.inbound_rtps.get("IT01")
        assert inbound.get_codec() is None
        assert inbound.get_remote_outbound_rtp() is None
