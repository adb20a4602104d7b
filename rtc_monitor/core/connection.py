"""ConnectionMonitor — the per-connection coordinator.

One ConnectionMonitor owns one IndexedStore per stats kind and the track
monitors built on top of them.  Each call to accept(batch) runs one
monitoring cycle to completion:

    1. reset the per-cycle accumulators
    2. classify and dispatch every record; the updater creates the
       monitor if absent, else calls accept(); the id is marked visited
    3. sweep every store, deleting what was not visited this cycle
    4. create or discard track monitors to match the swept stores
    5. recompute aggregates (bitrates, packet counters, RTT, high-water
       marks) and the outbound stability scores
    6. emit state-changed if the ICE state summary changed
    7. run playout, track and connection detectors

Architectural rules:
    1. A malformed record is logged and skipped; it never aborts the
       rest of the batch.
    2. The visited set lives here, not on the monitors.  Marking and
       sweeping are two explicit phases.
    3. Monitors reach each other only through the stores below.
    4. accept() never suspends.  Anything asynchronous belongs to the
       caller (see ClientMonitor).
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Optional, Union

from rtc_monitor.classifier.classifier import MalformedRecordError, RecordClassifier
from rtc_monitor.config import MonitorConfig
from rtc_monitor.core.channels import MonitorChannels
from rtc_monitor.detectors.base import Detectors
from rtc_monitor.detectors.connection import (
    CongestionDetector,
    CpuPerformanceDetector,
    LongPcConnectionEstablishmentDetector,
)
from rtc_monitor.domain.enums import ConnectionState, EventType, MediaKind, StatsKind
from rtc_monitor.domain.records import StatsRecord, UnrecognizedRecord
from rtc_monitor.foundation.clock import now_ms
from rtc_monitor.foundation.identifiers import new_id
from rtc_monitor.monitors.base import StatsMonitor, fraction_lost
from rtc_monitor.monitors.certificate import CertificateMonitor
from rtc_monitor.monitors.codec import CodecMonitor
from rtc_monitor.monitors.data_channel import DataChannelMonitor
from rtc_monitor.monitors.ice import (
    IceCandidateMonitor,
    IceCandidatePairMonitor,
    IceTransportMonitor,
    PeerConnectionTransportMonitor,
)
from rtc_monitor.monitors.inbound_rtp import InboundRtpMonitor
from rtc_monitor.monitors.media import MediaPlayoutMonitor, MediaSourceMonitor
from rtc_monitor.monitors.outbound_rtp import OutboundRtpMonitor
from rtc_monitor.monitors.remote_rtp import RemoteInboundRtpMonitor, RemoteOutboundRtpMonitor
from rtc_monitor.monitors.tracks import InboundTrackMonitor, OutboundTrackMonitor
from rtc_monitor.scores.calculated import CalculatedScore
from rtc_monitor.store.indexed_store import IndexedStore

logger = logging.getLogger(__name__)

RawRecord = Union[Mapping[str, Any], StatsRecord]


class IngestCounters:
    """Per-kind ingestion counters, for diagnostics."""

    __slots__ = ("accepted", "stale", "rejected", "unrecognized")

    def __init__(self) -> None:
        self.accepted = 0
        self.stale = 0
        self.rejected = 0
        self.unrecognized = 0

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "stale": self.stale,
            "rejected": self.rejected,
            "unrecognized": self.unrecognized,
        }


def _by_ssrc(monitor: Any) -> Optional[int]:
    return monitor.stats.ssrc


def _local_protocol(pair: IceCandidatePairMonitor) -> Optional[str]:
    local = pair.get_local_candidate()
    return local.protocol if local is not None else None


def _local_candidate_type(pair: IceCandidatePairMonitor) -> Optional[str]:
    local = pair.get_local_candidate()
    return local.candidate_type if local is not None else None


def _remote_url(pair: IceCandidatePairMonitor) -> str:
    remote = pair.get_remote_candidate()
    return (remote.url or "") if remote is not None else ""


class ConnectionMonitor:
    """Entity graph, aggregates and detectors of one peer connection.

    Args:
        connection_id: Stable id of the connection; generated if omitted.
        config: Detector and scoring configuration.
        channels: Where events and issues are published.
        label: Free-form name used in logs and samples.
    """

    def __init__(
        self,
        connection_id: Optional[str] = None,
        config: Optional[MonitorConfig] = None,
        channels: Optional[MonitorChannels] = None,
        label: Optional[str] = None,
    ) -> None:
        self.connection_id: str = connection_id or new_id()
        self.config: MonitorConfig = config or MonitorConfig()
        self.channels: MonitorChannels = channels or MonitorChannels()
        self.label = label
        self.app_data: dict[str, Any] = {}
        self._classifier = RecordClassifier()

        # ── Stores ───────────────────────────────────────────────────────
        self.codecs: IndexedStore[str, CodecMonitor] = IndexedStore()
        self.inbound_rtps: IndexedStore[str, InboundRtpMonitor] = IndexedStore()
        self.outbound_rtps: IndexedStore[str, OutboundRtpMonitor] = IndexedStore()
        self.remote_inbound_rtps: IndexedStore[str, RemoteInboundRtpMonitor] = IndexedStore()
        self.remote_outbound_rtps: IndexedStore[str, RemoteOutboundRtpMonitor] = IndexedStore()
        self.media_sources: IndexedStore[str, MediaSourceMonitor] = IndexedStore()
        self.media_playouts: IndexedStore[str, MediaPlayoutMonitor] = IndexedStore()
        self.peer_connection_transports: IndexedStore[str, PeerConnectionTransportMonitor] = IndexedStore()
        self.data_channels: IndexedStore[str, DataChannelMonitor] = IndexedStore()
        self.transports: IndexedStore[str, IceTransportMonitor] = IndexedStore()
        self.candidate_pairs: IndexedStore[str, IceCandidatePairMonitor] = IndexedStore()
        self.local_candidates: IndexedStore[str, IceCandidateMonitor] = IndexedStore()
        self.remote_candidates: IndexedStore[str, IceCandidateMonitor] = IndexedStore()
        self.certificates: IndexedStore[str, CertificateMonitor] = IndexedStore()

        for store in (self.inbound_rtps, self.outbound_rtps, self.remote_inbound_rtps, self.remote_outbound_rtps):
            store.add_index("ssrc", _by_ssrc)
        self.outbound_rtps.add_index("media_source_id", lambda m: m.stats.media_source_id)

        window = self.config.scoring.outbound_stability_window_length
        self._stores: dict[StatsKind, tuple[IndexedStore, Callable[[Any], StatsMonitor]]] = {
            StatsKind.CODEC: (self.codecs, lambda s: CodecMonitor(self, s)),
            StatsKind.INBOUND_RTP: (self.inbound_rtps, lambda s: InboundRtpMonitor(self, s)),
            StatsKind.OUTBOUND_RTP: (self.outbound_rtps, lambda s: OutboundRtpMonitor(self, s, window)),
            StatsKind.REMOTE_INBOUND_RTP: (self.remote_inbound_rtps, lambda s: RemoteInboundRtpMonitor(self, s)),
            StatsKind.REMOTE_OUTBOUND_RTP: (self.remote_outbound_rtps, lambda s: RemoteOutboundRtpMonitor(self, s)),
            StatsKind.MEDIA_SOURCE: (self.media_sources, lambda s: MediaSourceMonitor(self, s)),
            StatsKind.MEDIA_PLAYOUT: (self.media_playouts, lambda s: MediaPlayoutMonitor(self, s)),
            StatsKind.PEER_CONNECTION: (
                self.peer_connection_transports,
                lambda s: PeerConnectionTransportMonitor(self, s),
            ),
            StatsKind.DATA_CHANNEL: (self.data_channels, lambda s: DataChannelMonitor(self, s)),
            StatsKind.TRANSPORT: (self.transports, lambda s: IceTransportMonitor(self, s)),
            StatsKind.CANDIDATE_PAIR: (self.candidate_pairs, lambda s: IceCandidatePairMonitor(self, s)),
            StatsKind.LOCAL_CANDIDATE: (self.local_candidates, lambda s: IceCandidateMonitor(self, s)),
            StatsKind.REMOTE_CANDIDATE: (self.remote_candidates, lambda s: IceCandidateMonitor(self, s)),
            StatsKind.CERTIFICATE: (self.certificates, lambda s: CertificateMonitor(self, s)),
        }
        self._handlers = {kind: self._make_updater(kind) for kind in self._stores}
        self._visited: dict[StatsKind, set[str]] = {}
        # id() of every monitor created or given a newer snapshot this cycle
        self._fresh: set[int] = set()
        self.ingest_stats: dict[str, IngestCounters] = {}

        # ── Tracks, detectors, score ─────────────────────────────────────
        self.inbound_tracks: dict[str, InboundTrackMonitor] = {}
        self.outbound_tracks: dict[str, OutboundTrackMonitor] = {}
        self.detectors = Detectors(
            LongPcConnectionEstablishmentDetector(self),
            CongestionDetector(self),
            CpuPerformanceDetector(self),
        )
        self.score = CalculatedScore()

        # ── Lifecycle ────────────────────────────────────────────────────
        self.created_at: float = now_ms()
        self.closed = False
        self.cycles = 0
        self.connection_state = ConnectionState.NEW
        self.connecting_started_at: Optional[float] = None
        self.connected_at: Optional[float] = None
        self.connection_established_duration_ms: Optional[float] = None

        # ── Aggregates ───────────────────────────────────────────────────
        self.sending_audio_bitrate = 0.0
        self.sending_video_bitrate = 0.0
        self.receiving_audio_bitrate = 0.0
        self.receiving_video_bitrate = 0.0
        self.total_inbound_packets_lost = 0
        self.total_inbound_packets_received = 0
        self.total_outbound_packets_sent = 0
        self.total_outbound_packets_lost = 0
        self.delta_inbound_packets_lost = 0
        self.delta_inbound_packets_received = 0
        self.delta_outbound_packets_sent = 0
        self.delta_outbound_packets_lost = 0
        self.delta_data_channel_bytes_sent = 0
        self.delta_data_channel_bytes_received = 0
        self.total_available_incoming_bitrate = 0.0
        self.total_available_outgoing_bitrate = 0.0
        self.avg_rtt: Optional[float] = None
        self.ewma_rtt: Optional[float] = None
        self.sending_fraction_lost: Optional[float] = None
        self.receiving_fraction_lost: Optional[float] = None
        self.highest_seen_sending_bitrate: Optional[float] = None
        self.highest_seen_receiving_bitrate: Optional[float] = None
        self.highest_seen_available_incoming_bitrate: Optional[float] = None
        self.highest_seen_available_outgoing_bitrate: Optional[float] = None
        self.ice_state: Optional[str] = None
        self.using_tcp = False
        self.using_turn = False
        self._state_summary: Optional[str] = None

        logger.info("Connection monitor %s created (label=%s)", self.connection_id, label)

    # ── Public API ───────────────────────────────────────────────────────

    def accept(self, batch: Iterable[RawRecord]) -> None:
        """Run one monitoring cycle over *batch*."""
        if self.closed:
            logger.warning("Connection %s is closed; batch ignored", self.connection_id)
            return
        self.cycles += 1
        self._reset_accumulators()
        self._visited = {kind: set() for kind in self._stores}
        self._fresh = set()

        for raw in batch:
            self._ingest(raw)

        self._sweep()
        self._sync_tracks()
        self._update_aggregates()
        self._update_state_summary()
        self._run_detectors()

    def set_connection_state(self, state: ConnectionState) -> None:
        """Record a peer-connection state change reported by the owner."""
        if state == self.connection_state:
            return
        now = now_ms()
        if state == ConnectionState.CONNECTING:
            self.connecting_started_at = now
            self.connection_established_duration_ms = None
        elif state == ConnectionState.CONNECTED:
            self.connected_at = now
            if self.connecting_started_at is not None:
                self.connection_established_duration_ms = now - self.connecting_started_at
        logger.info(
            "Connection %s state %s -> %s",
            self.connection_id,
            self.connection_state.value,
            state.value,
        )
        self.connection_state = state

    def close(self) -> None:
        """Discard every store, track and detector.  Idempotent."""
        if self.closed:
            return
        self.closed = True
        for store, _ in self._stores.values():
            store.clear()
        self.inbound_tracks.clear()
        self.outbound_tracks.clear()
        self.detectors.clear()
        self.connection_state = ConnectionState.CLOSED
        logger.info("Connection monitor %s closed after %d cycles", self.connection_id, self.cycles)

    def is_fresh(self, monitor: StatsMonitor) -> bool:
        """True when *monitor* was created or took a newer snapshot in the last cycle."""
        return id(monitor) in self._fresh

    def get_selected_candidate_pairs(self) -> list[IceCandidatePairMonitor]:
        """Pairs selected by the transports, else the nominated pairs."""
        selected = [
            pair
            for pair in (transport.get_selected_candidate_pair() for transport in self.transports.values())
            if pair is not None
        ]
        if selected:
            return selected
        return [pair for pair in self.candidate_pairs.values() if pair.stats.nominated]

    @property
    def tracks(self) -> list[InboundTrackMonitor | OutboundTrackMonitor]:
        return [*self.inbound_tracks.values(), *self.outbound_tracks.values()]

    @property
    def state_summary(self) -> Optional[str]:
        return self._state_summary

    def create_sample(self) -> dict[str, Any]:
        return {
            "peerConnectionId": self.connection_id,
            "label": self.label,
            "codecs": [m.create_sample() for m in self.codecs.values()],
            "inboundRtps": [m.create_sample() for m in self.inbound_rtps.values()],
            "remoteOutboundRtps": [m.create_sample() for m in self.remote_outbound_rtps.values()],
            "outboundRtps": [m.create_sample() for m in self.outbound_rtps.values()],
            "remoteInboundRtps": [m.create_sample() for m in self.remote_inbound_rtps.values()],
            "mediaSources": [m.create_sample() for m in self.media_sources.values()],
            "mediaPlayouts": [m.create_sample() for m in self.media_playouts.values()],
            "peerConnectionTransports": [m.create_sample() for m in self.peer_connection_transports.values()],
            "dataChannels": [m.create_sample() for m in self.data_channels.values()],
            "iceTransports": [m.create_sample() for m in self.transports.values()],
            "iceCandidates": [
                m.create_sample()
                for m in (*self.local_candidates.values(), *self.remote_candidates.values())
            ],
            "iceCandidatePairs": [m.create_sample() for m in self.candidate_pairs.values()],
            "certificates": [m.create_sample() for m in self.certificates.values()],
            "inboundTracks": [t.create_sample() for t in self.inbound_tracks.values()],
            "outboundTracks": [t.create_sample() for t in self.outbound_tracks.values()],
            "score": self.score.value,
        }

    # ── Ingestion ────────────────────────────────────────────────────────

    def _counters(self, kind: str) -> IngestCounters:
        counters = self.ingest_stats.get(kind)
        if counters is None:
            counters = IngestCounters()
            self.ingest_stats[kind] = counters
        return counters

    def _ingest(self, raw: RawRecord) -> None:
        try:
            record = self._classifier.classify(raw)
        except MalformedRecordError as exc:
            self._counters(exc.kind).rejected += 1
            logger.warning("Connection %s skipped a record: %s", self.connection_id, exc)
            return
        if isinstance(record, UnrecognizedRecord):
            self._counters(record.raw_type or "?").unrecognized += 1
        self._classifier.dispatch(record, self._handlers)

    def _make_updater(self, kind: StatsKind) -> Callable[[StatsRecord], StatsMonitor]:
        store, factory = self._stores[kind]

        def update(record: StatsRecord) -> StatsMonitor:
            counters = self._counters(kind.value)
            monitor = store.get(record.id)
            if monitor is None:
                monitor = factory(record)
                store.set(record.id, monitor)
                self._fresh.add(id(monitor))
                counters.accepted += 1
                logger.info(
                    "Connection %s added %s monitor %s",
                    self.connection_id,
                    kind.value,
                    record.id,
                )
            elif monitor.accept(record):
                # re-set so secondary indexes follow the new snapshot
                store.set(record.id, monitor)
                counters.accepted += 1
                self._fresh.add(id(monitor))
            else:
                counters.stale += 1
            self._visited[kind].add(record.id)
            return monitor

        return update

    def _sweep(self) -> None:
        for kind, (store, _) in self._stores.items():
            visited = self._visited.get(kind, set())
            for key in [k for k in store.keys() if k not in visited]:
                store.delete(key)
                logger.info("Connection %s removed %s monitor %s", self.connection_id, kind.value, key)
        self._visited = {}

    def _sync_tracks(self) -> None:
        for track_id, track in list(self.inbound_tracks.items()):
            inbound_rtp = track.get_inbound_rtp()
            if self.inbound_rtps.get(inbound_rtp.id) is not inbound_rtp:
                del self.inbound_tracks[track_id]
                logger.info("Connection %s removed inbound track %s", self.connection_id, track_id)
        for inbound_rtp in self.inbound_rtps.values():
            if inbound_rtp.track_identifier not in self.inbound_tracks:
                self.inbound_tracks[inbound_rtp.track_identifier] = InboundTrackMonitor(self, inbound_rtp)
                logger.info(
                    "Connection %s added inbound %s track %s",
                    self.connection_id,
                    inbound_rtp.kind.value,
                    inbound_rtp.track_identifier,
                )

        for track_id, track in list(self.outbound_tracks.items()):
            source = track.get_media_source()
            if self.media_sources.get(source.id) is not source:
                del self.outbound_tracks[track_id]
                logger.info("Connection %s removed outbound track %s", self.connection_id, track_id)
        for source in self.media_sources.values():
            if source.track_identifier not in self.outbound_tracks:
                self.outbound_tracks[source.track_identifier] = OutboundTrackMonitor(self, source)
                logger.info(
                    "Connection %s added outbound %s track %s",
                    self.connection_id,
                    source.kind.value,
                    source.track_identifier,
                )

    # ── Aggregates ───────────────────────────────────────────────────────

    def _reset_accumulators(self) -> None:
        self.sending_audio_bitrate = 0.0
        self.sending_video_bitrate = 0.0
        self.receiving_audio_bitrate = 0.0
        self.receiving_video_bitrate = 0.0
        self.total_inbound_packets_lost = 0
        self.total_inbound_packets_received = 0
        self.total_outbound_packets_sent = 0
        self.total_outbound_packets_lost = 0
        self.delta_inbound_packets_lost = 0
        self.delta_inbound_packets_received = 0
        self.delta_outbound_packets_sent = 0
        self.delta_outbound_packets_lost = 0
        self.delta_data_channel_bytes_sent = 0
        self.delta_data_channel_bytes_received = 0
        self.total_available_incoming_bitrate = 0.0
        self.total_available_outgoing_bitrate = 0.0

    def _update_aggregates(self) -> None:
        rtts: list[float] = []

        for inbound in self.inbound_rtps.values():
            if inbound.kind == MediaKind.AUDIO:
                self.receiving_audio_bitrate += inbound.bitrate or 0.0
            else:
                self.receiving_video_bitrate += inbound.bitrate or 0.0
            self.total_inbound_packets_lost += inbound.stats.packets_lost or 0
            self.total_inbound_packets_received += inbound.stats.packets_received or 0
            self.delta_inbound_packets_lost += inbound.delta_packets_lost or 0
            self.delta_inbound_packets_received += inbound.delta_packets_received or 0

        for outbound in self.outbound_rtps.values():
            if outbound.kind == MediaKind.AUDIO:
                self.sending_audio_bitrate += outbound.bitrate or 0.0
            else:
                self.sending_video_bitrate += outbound.bitrate or 0.0
            self.total_outbound_packets_sent += outbound.stats.packets_sent or 0
            self.delta_outbound_packets_sent += outbound.delta_packets_sent or 0

        for remote_inbound in self.remote_inbound_rtps.values():
            self.total_outbound_packets_lost += remote_inbound.stats.packets_lost or 0
            self.delta_outbound_packets_lost += remote_inbound.delta_packets_lost or 0
            if remote_inbound.stats.round_trip_time:
                rtts.append(remote_inbound.stats.round_trip_time)

        for remote_outbound in self.remote_outbound_rtps.values():
            if remote_outbound.stats.round_trip_time:
                rtts.append(remote_outbound.stats.round_trip_time)

        for data_channel in self.data_channels.values():
            self.delta_data_channel_bytes_sent += data_channel.delta_bytes_sent or 0
            self.delta_data_channel_bytes_received += data_channel.delta_bytes_received or 0

        selected_pairs = self.get_selected_candidate_pairs()
        for pair in selected_pairs:
            self.total_available_incoming_bitrate += pair.stats.available_incoming_bitrate or 0.0
            self.total_available_outgoing_bitrate += pair.stats.available_outgoing_bitrate or 0.0
            if pair.stats.current_round_trip_time:
                rtts.append(pair.stats.current_round_trip_time)

        previous_avg_rtt = self.avg_rtt
        if rtts:
            self.avg_rtt = sum(rtts) / len(rtts)
            if self.ewma_rtt is None:
                self.ewma_rtt = self.avg_rtt
            else:
                self.ewma_rtt = self.avg_rtt * 0.1 + self.ewma_rtt * 0.9

        self.sending_fraction_lost = fraction_lost(
            self.delta_outbound_packets_lost, self.delta_outbound_packets_sent
        )
        self.receiving_fraction_lost = fraction_lost(
            self.delta_inbound_packets_lost, self.delta_inbound_packets_received
        )

        self.highest_seen_sending_bitrate = max(
            self.highest_seen_sending_bitrate or 0.0,
            self.sending_audio_bitrate + self.sending_video_bitrate,
        )
        self.highest_seen_receiving_bitrate = max(
            self.highest_seen_receiving_bitrate or 0.0,
            self.receiving_audio_bitrate + self.receiving_video_bitrate,
        )
        self.highest_seen_available_incoming_bitrate = max(
            self.highest_seen_available_incoming_bitrate or 0.0,
            self.total_available_incoming_bitrate,
        )
        self.highest_seen_available_outgoing_bitrate = max(
            self.highest_seen_available_outgoing_bitrate or 0.0,
            self.total_available_outgoing_bitrate,
        )

        if self.avg_rtt is not None and previous_avg_rtt is not None:
            for outbound in self.outbound_rtps.values():
                outbound.update_stability_score(self.avg_rtt, previous_avg_rtt)

        self.using_tcp = any(_local_protocol(pair) == "tcp" for pair in selected_pairs)
        self.using_turn = any(_local_candidate_type(pair) == "relay" for pair in selected_pairs) and any(
            _remote_url(pair).startswith("turn:") for pair in selected_pairs
        )
        transport = selected_pairs[0].get_transport() if selected_pairs else None
        self.ice_state = transport.ice_state if transport is not None else None

    def _update_state_summary(self) -> None:
        summary = f"{self.ice_state}-{self.using_tcp}-{self.using_turn}"
        if summary == self._state_summary:
            return
        previous = self._state_summary
        self._state_summary = summary
        self.channels.emit(
            EventType.STATE_CHANGED,
            self.connection_id,
            previous=previous,
            current=summary,
            ice_state=self.ice_state,
            using_tcp=self.using_tcp,
            using_turn=self.using_turn,
        )

    # ── Detection ────────────────────────────────────────────────────────

    def _run_detectors(self) -> None:
        # stale snapshots carry no new deltas; their detectors sit the cycle out
        for playout in self.media_playouts.values():
            if self.is_fresh(playout):
                playout.detectors.update()
        for track in self.inbound_tracks.values():
            if self.is_fresh(track.get_inbound_rtp()):
                track.update()
        for track in self.outbound_tracks.values():
            track.update()
        self.detectors.update()
