"""Controlled enumerations for the rtc-monitor domain.

Every categorical field in the domain MUST reference an enum defined here.
String values are the W3C webrtc-stats identifiers so records can be
classified directly from the wire.
"""

from __future__ import annotations

from enum import Enum


class StatsKind(str, Enum):
    """The closed set of stat record kinds the classifier understands."""

    CODEC = "codec"
    INBOUND_RTP = "inbound-rtp"
    OUTBOUND_RTP = "outbound-rtp"
    REMOTE_INBOUND_RTP = "remote-inbound-rtp"
    REMOTE_OUTBOUND_RTP = "remote-outbound-rtp"
    MEDIA_SOURCE = "media-source"
    MEDIA_PLAYOUT = "media-playout"
    PEER_CONNECTION = "peer-connection"
    DATA_CHANNEL = "data-channel"
    TRANSPORT = "transport"
    CANDIDATE_PAIR = "candidate-pair"
    LOCAL_CANDIDATE = "local-candidate"
    REMOTE_CANDIDATE = "remote-candidate"
    CERTIFICATE = "certificate"
    UNRECOGNIZED = "unrecognized"


class MediaKind(str, Enum):
    AUDIO = "audio"
    VIDEO = "video"


class TrackDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class ConnectionState(str, Enum):
    """RTCPeerConnectionState values reported by the collaborator."""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


class EventType(str, Enum):
    """Every event the monitors may publish on the event channel."""

    STATE_CHANGED = "state-changed"
    FREEZED_VIDEO_TRACK = "freezed-video-track"
    DRY_INBOUND_TRACK = "dry-inbound-track"
    DRY_OUTBOUND_TRACK = "dry-outbound-track"
    PLAYOUT_DISCREPANCY = "inbound-video-playout-discrepancy"
    SYNTHESIZED_SAMPLES = "synthesized-samples"
    AUDIO_DESYNC = "audio-desync"
    CONGESTION = "congestion"
    CPU_LIMITATION = "cpu-limitation"
    LONG_PC_CONNECTION_ESTABLISHMENT = "too-long-pc-connection-establishment"
    STATS_COLLECTED = "stats-collected"
    STATS_COLLECTING_FAILED = "stats-collecting-failed"
    SOURCE_TEARDOWN_REQUESTED = "source-teardown-requested"
    SCORE = "score"


class IssueType(str, Enum):
    """Issue categories opened by detectors when issue creation is enabled."""

    DRY_INBOUND_TRACK = "dry-inbound-track"
    DRY_OUTBOUND_TRACK = "dry-outbound-track"
    FREEZED_VIDEO_TRACK = "freezed-video-track"
    PLAYOUT_DISCREPANCY = "inbound-video-playout-discrepancy"
    SYNTHESIZED_SAMPLES = "synthesized-samples"
    AUDIO_DESYNC = "audio-desync"
    CONGESTION = "congestion"
    CPU_LIMITATION = "cpu-limitation"
    LONG_PC_CONNECTION_ESTABLISHMENT = "long-pc-connection-establishment"
