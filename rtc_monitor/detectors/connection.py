"""Detectors bound to a whole peer connection."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rtc_monitor.detectors.base import Detector
from rtc_monitor.domain.enums import ConnectionState, EventType, IssueType
from rtc_monitor.foundation.clock import now_ms

if TYPE_CHECKING:
    from rtc_monitor.config import DetectorConfig, LongPcConnectionEstablishmentDetectorConfig
    from rtc_monitor.core.connection import ConnectionMonitor


class CongestionDetector(Detector):
    """An outbound stream is limited by bandwidth.

    The available bitrates seen in the last uncongested cycle are kept so
    the event can report them next to the values at the moment of
    congestion.
    """

    name = "congestion-detector"

    def __init__(self, connection: ConnectionMonitor) -> None:
        self._connection = connection
        self.congested = False
        self._last_available_incoming_bitrate: Optional[float] = None
        self._last_available_outgoing_bitrate: Optional[float] = None

    @property
    def _config(self) -> DetectorConfig:
        return self._connection.config.congestion

    def update(self) -> None:
        config = self._config
        if config.disabled:
            return
        connection = self._connection
        is_congested = any(
            outbound.stats.quality_limitation_reason == "bandwidth"
            for outbound in connection.outbound_rtps.values()
        )
        pairs = connection.get_selected_candidate_pairs()
        pair = pairs[0] if pairs else None
        incoming = pair.stats.available_incoming_bitrate if pair is not None else None
        outgoing = pair.stats.available_outgoing_bitrate if pair is not None else None

        was_congested = self.congested
        self.congested = is_congested
        if not is_congested:
            self._last_available_incoming_bitrate = incoming
            self._last_available_outgoing_bitrate = outgoing
        if was_congested or not is_congested:
            return

        connection.channels.emit(
            EventType.CONGESTION,
            connection.connection_id,
            available_incoming_bitrate_before=self._last_available_incoming_bitrate,
            available_incoming_bitrate_after=incoming,
            available_outgoing_bitrate_before=self._last_available_outgoing_bitrate,
            available_outgoing_bitrate_after=outgoing,
            highest_seen_available_incoming_bitrate=connection.highest_seen_available_incoming_bitrate,
            highest_seen_available_outgoing_bitrate=connection.highest_seen_available_outgoing_bitrate,
        )
        if config.create_issue:
            connection.channels.add_issue(
                IssueType.CONGESTION,
                peerConnectionId=connection.connection_id,
                availableIncomingBitrateBefore=self._last_available_incoming_bitrate,
                availableIncomingBitrateAfter=incoming,
                availableOutgoingBitrateBefore=self._last_available_outgoing_bitrate,
                availableOutgoingBitrateAfter=outgoing,
            )


class CpuPerformanceDetector(Detector):
    """An outbound stream is limited by the local CPU."""

    name = "cpu-performance-detector"

    def __init__(self, connection: ConnectionMonitor) -> None:
        self._connection = connection
        self.limited = False

    @property
    def _config(self) -> DetectorConfig:
        return self._connection.config.cpu_performance

    def update(self) -> None:
        config = self._config
        if config.disabled:
            return
        connection = self._connection
        is_limited = any(
            outbound.stats.quality_limitation_reason == "cpu"
            for outbound in connection.outbound_rtps.values()
        )
        was_limited = self.limited
        self.limited = is_limited
        if was_limited == is_limited:
            return

        connection.channels.emit(
            EventType.CPU_LIMITATION,
            connection.connection_id,
            state="on" if is_limited else "off",
        )
        if is_limited and config.create_issue:
            connection.channels.add_issue(
                IssueType.CPU_LIMITATION,
                peerConnectionId=connection.connection_id,
            )


class LongPcConnectionEstablishmentDetector(Detector):
    """The connection has been connecting for longer than the threshold.

    Fires once per connecting attempt; reaching the connected state re-arms
    it.
    """

    name = "long-pc-connection-establishment-detector"

    def __init__(self, connection: ConnectionMonitor) -> None:
        self._connection = connection
        self.triggered = False

    @property
    def _config(self) -> LongPcConnectionEstablishmentDetectorConfig:
        return self._connection.config.long_pc_connection_establishment

    def update(self) -> None:
        config = self._config
        if config.disabled:
            return
        connection = self._connection
        if connection.connection_state == ConnectionState.CONNECTED:
            self.triggered = False
            return
        if connection.connection_state != ConnectionState.CONNECTING:
            return
        if self.triggered or connection.connecting_started_at is None:
            return

        duration = now_ms() - connection.connecting_started_at
        if duration < config.threshold_in_ms:
            return

        self.triggered = True
        connection.channels.emit(
            EventType.LONG_PC_CONNECTION_ESTABLISHMENT,
            connection.connection_id,
            duration=duration,
        )
        if config.create_issue:
            connection.channels.add_issue(
                IssueType.LONG_PC_CONNECTION_ESTABLISHMENT,
                peerConnectionId=connection.connection_id,
                duration=duration,
            )
