"""Typed stat records — the contract between a stats source and the monitors.

Each record kind is a frozen pydantic model.  The set of kinds is closed:
anything the classifier cannot map to one of the models below becomes an
UnrecognizedRecord instead of an untyped dict.

Wire format:
    Records arrive in W3C webrtc-stats shape (camelCase keys, the record
    kind under ``type``).  Models accept camelCase aliases and expose
    snake_case attributes.  Unknown keys are ignored.  Fields without a
    default are the ones a record MUST carry to be accepted; a record
    missing any of them fails validation and is skipped by the caller.
"""

from __future__ import annotations

from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from rtc_monitor.domain.enums import MediaKind, StatsKind


class StatsRecord(BaseModel):
    """Fields common to every stat record."""

    record_kind: ClassVar[StatsKind]

    id: str = Field(..., min_length=1, description="Stats object id, stable across polls")
    timestamp: float = Field(..., allow_inf_nan=False, description="Report time in milliseconds")

    model_config = {
        "frozen": True,
        "extra": "ignore",
        "populate_by_name": True,
        "alias_generator": to_camel,
    }

    def to_wire(self) -> dict[str, Any]:
        """Wire-shaped projection: camelCase keys, unset fields dropped."""
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ── RTP ──────────────────────────────────────────────────────────────────────

class CodecStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.CODEC

    payload_type: int
    mime_type: str
    transport_id: Optional[str] = None
    clock_rate: Optional[int] = None
    channels: Optional[int] = None
    sdp_fmtp_line: Optional[str] = None


class InboundRtpStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.INBOUND_RTP

    ssrc: int
    kind: MediaKind
    track_identifier: str
    transport_id: Optional[str] = None
    codec_id: Optional[str] = None
    remote_id: Optional[str] = None
    playout_id: Optional[str] = None
    mid: Optional[str] = None
    packets_received: Optional[int] = None
    packets_lost: Optional[int] = None
    packets_discarded: Optional[int] = None
    jitter: Optional[float] = None
    bytes_received: Optional[int] = None
    header_bytes_received: Optional[int] = None
    fec_bytes_received: Optional[int] = None
    fec_packets_received: Optional[int] = None
    fec_packets_discarded: Optional[int] = None
    retransmitted_packets_received: Optional[int] = None
    retransmitted_bytes_received: Optional[int] = None
    last_packet_received_timestamp: Optional[float] = None
    estimated_playout_timestamp: Optional[float] = None
    nack_count: Optional[int] = None
    fir_count: Optional[int] = None
    pli_count: Optional[int] = None
    jitter_buffer_delay: Optional[float] = None
    jitter_buffer_target_delay: Optional[float] = None
    jitter_buffer_minimum_delay: Optional[float] = None
    jitter_buffer_emitted_count: Optional[int] = None
    total_processing_delay: Optional[float] = None
    # video
    frames_received: Optional[int] = None
    frames_decoded: Optional[int] = None
    key_frames_decoded: Optional[int] = None
    frames_rendered: Optional[int] = None
    frames_dropped: Optional[int] = None
    frame_width: Optional[int] = None
    frame_height: Optional[int] = None
    frames_per_second: Optional[float] = None
    qp_sum: Optional[int] = None
    total_decode_time: Optional[float] = None
    total_inter_frame_delay: Optional[float] = None
    total_squared_inter_frame_delay: Optional[float] = None
    freeze_count: Optional[int] = None
    total_freezes_duration: Optional[float] = None
    pause_count: Optional[int] = None
    total_pauses_duration: Optional[float] = None
    decoder_implementation: Optional[str] = None
    total_corruption_probability: Optional[float] = None
    total_squared_corruption_probability: Optional[float] = None
    corruption_measurements: Optional[int] = None
    # audio
    total_samples_received: Optional[int] = None
    concealed_samples: Optional[int] = None
    silent_concealed_samples: Optional[int] = None
    concealment_events: Optional[int] = None
    inserted_samples_for_deceleration: Optional[int] = None
    removed_samples_for_acceleration: Optional[int] = None
    audio_level: Optional[float] = None
    total_audio_energy: Optional[float] = None
    total_samples_duration: Optional[float] = None


class OutboundRtpStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.OUTBOUND_RTP

    ssrc: int
    kind: MediaKind
    transport_id: Optional[str] = None
    codec_id: Optional[str] = None
    media_source_id: Optional[str] = None
    remote_id: Optional[str] = None
    mid: Optional[str] = None
    rid: Optional[str] = None
    packets_sent: Optional[int] = None
    bytes_sent: Optional[int] = None
    header_bytes_sent: Optional[int] = None
    retransmitted_packets_sent: Optional[int] = None
    retransmitted_bytes_sent: Optional[int] = None
    target_bitrate: Optional[float] = None
    total_encoded_bytes_target: Optional[int] = None
    frame_width: Optional[int] = None
    frame_height: Optional[int] = None
    frames_per_second: Optional[float] = None
    frames_sent: Optional[int] = None
    huge_frames_sent: Optional[int] = None
    frames_encoded: Optional[int] = None
    key_frames_encoded: Optional[int] = None
    qp_sum: Optional[int] = None
    total_encode_time: Optional[float] = None
    total_packet_send_delay: Optional[float] = None
    quality_limitation_reason: Optional[str] = None
    quality_limitation_durations: Optional[dict[str, float]] = None
    quality_limitation_resolution_changes: Optional[int] = None
    nack_count: Optional[int] = None
    fir_count: Optional[int] = None
    pli_count: Optional[int] = None
    encoder_implementation: Optional[str] = None
    active: Optional[bool] = None
    scalability_mode: Optional[str] = None


class RemoteInboundRtpStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.REMOTE_INBOUND_RTP

    ssrc: int
    kind: MediaKind
    transport_id: Optional[str] = None
    codec_id: Optional[str] = None
    local_id: Optional[str] = None
    packets_received: Optional[int] = None
    packets_lost: Optional[int] = None
    jitter: Optional[float] = None
    round_trip_time: Optional[float] = None
    total_round_trip_time: Optional[float] = None
    round_trip_time_measurements: Optional[int] = None
    fraction_lost: Optional[float] = None


class RemoteOutboundRtpStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.REMOTE_OUTBOUND_RTP

    ssrc: int
    kind: MediaKind
    transport_id: Optional[str] = None
    codec_id: Optional[str] = None
    local_id: Optional[str] = None
    packets_sent: Optional[int] = None
    bytes_sent: Optional[int] = None
    remote_timestamp: Optional[float] = None
    reports_sent: Optional[int] = None
    round_trip_time: Optional[float] = None
    total_round_trip_time: Optional[float] = None
    round_trip_time_measurements: Optional[int] = None


# ── Media ────────────────────────────────────────────────────────────────────

class MediaSourceStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.MEDIA_SOURCE

    track_identifier: str
    kind: MediaKind
    audio_level: Optional[float] = None
    total_audio_energy: Optional[float] = None
    total_samples_duration: Optional[float] = None
    echo_return_loss: Optional[float] = None
    echo_return_loss_enhancement: Optional[float] = None
    width: Optional[int] = None
    height: Optional[int] = None
    frames: Optional[int] = None
    frames_per_second: Optional[float] = None


class MediaPlayoutStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.MEDIA_PLAYOUT

    kind: MediaKind
    synthesized_samples_duration: Optional[float] = None
    synthesized_samples_events: Optional[int] = None
    total_samples_duration: Optional[float] = None
    total_playout_delay: Optional[float] = None
    total_samples_count: Optional[int] = None


# ── Connection ───────────────────────────────────────────────────────────────

class PeerConnectionTransportStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.PEER_CONNECTION

    data_channels_opened: int
    data_channels_closed: int


class DataChannelStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.DATA_CHANNEL

    label: str
    protocol: Optional[str] = None
    data_channel_identifier: Optional[int] = None
    state: Optional[str] = None
    messages_sent: Optional[int] = None
    bytes_sent: Optional[int] = None
    messages_received: Optional[int] = None
    bytes_received: Optional[int] = None


class IceTransportStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.TRANSPORT

    packets_sent: Optional[int] = None
    packets_received: Optional[int] = None
    bytes_sent: Optional[int] = None
    bytes_received: Optional[int] = None
    ice_role: Optional[str] = None
    ice_local_username_fragment: Optional[str] = None
    dtls_state: Optional[str] = None
    ice_state: Optional[str] = None
    selected_candidate_pair_id: Optional[str] = None
    local_certificate_id: Optional[str] = None
    remote_certificate_id: Optional[str] = None
    tls_version: Optional[str] = None
    dtls_cipher: Optional[str] = None
    dtls_role: Optional[str] = None
    srtp_cipher: Optional[str] = None
    selected_candidate_pair_changes: Optional[int] = None


class IceCandidatePairStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.CANDIDATE_PAIR

    state: str
    transport_id: Optional[str] = None
    local_candidate_id: Optional[str] = None
    remote_candidate_id: Optional[str] = None
    nominated: Optional[bool] = None
    packets_sent: Optional[int] = None
    packets_received: Optional[int] = None
    bytes_sent: Optional[int] = None
    bytes_received: Optional[int] = None
    last_packet_sent_timestamp: Optional[float] = None
    last_packet_received_timestamp: Optional[float] = None
    total_round_trip_time: Optional[float] = None
    current_round_trip_time: Optional[float] = None
    available_outgoing_bitrate: Optional[float] = None
    available_incoming_bitrate: Optional[float] = None
    requests_received: Optional[int] = None
    requests_sent: Optional[int] = None
    responses_received: Optional[int] = None
    responses_sent: Optional[int] = None
    consent_requests_sent: Optional[int] = None
    packets_discarded_on_send: Optional[int] = None
    bytes_discarded_on_send: Optional[int] = None


class IceCandidateStats(StatsRecord):
    """Shared shape of local and remote ICE candidates."""

    protocol: str
    transport_id: Optional[str] = None
    address: Optional[str] = None
    port: Optional[int] = None
    candidate_type: Optional[str] = None
    priority: Optional[int] = None
    url: Optional[str] = None
    relay_protocol: Optional[str] = None
    foundation: Optional[str] = None
    related_address: Optional[str] = None
    related_port: Optional[int] = None
    username_fragment: Optional[str] = None
    tcp_type: Optional[str] = None


class LocalCandidateStats(IceCandidateStats):
    record_kind: ClassVar[StatsKind] = StatsKind.LOCAL_CANDIDATE


class RemoteCandidateStats(IceCandidateStats):
    record_kind: ClassVar[StatsKind] = StatsKind.REMOTE_CANDIDATE


class CertificateStats(StatsRecord):
    record_kind: ClassVar[StatsKind] = StatsKind.CERTIFICATE

    fingerprint: str
    fingerprint_algorithm: str
    base64_certificate: Optional[str] = None
    issuer_certificate_id: Optional[str] = None


# ── Unrecognized ─────────────────────────────────────────────────────────────

class UnrecognizedRecord(BaseModel):
    """A record whose ``type`` is outside the closed set of known kinds.

    Carried through classification so callers can count or log it, but
    no monitor ever consumes it.
    """

    record_kind: ClassVar[StatsKind] = StatsKind.UNRECOGNIZED

    raw_type: Optional[str] = None
    id: Optional[str] = None

    model_config = {"frozen": True}


RECORD_MODELS: dict[StatsKind, type[StatsRecord]] = {
    StatsKind.CODEC: CodecStats,
    StatsKind.INBOUND_RTP: InboundRtpStats,
    StatsKind.OUTBOUND_RTP: OutboundRtpStats,
    StatsKind.REMOTE_INBOUND_RTP: RemoteInboundRtpStats,
    StatsKind.REMOTE_OUTBOUND_RTP: RemoteOutboundRtpStats,
    StatsKind.MEDIA_SOURCE: MediaSourceStats,
    StatsKind.MEDIA_PLAYOUT: MediaPlayoutStats,
    StatsKind.PEER_CONNECTION: PeerConnectionTransportStats,
    StatsKind.DATA_CHANNEL: DataChannelStats,
    StatsKind.TRANSPORT: IceTransportStats,
    StatsKind.CANDIDATE_PAIR: IceCandidatePairStats,
    StatsKind.LOCAL_CANDIDATE: LocalCandidateStats,
    StatsKind.REMOTE_CANDIDATE: RemoteCandidateStats,
    StatsKind.CERTIFICATE: CertificateStats,
}

ClassifiedRecord = Union[StatsRecord, UnrecognizedRecord]
