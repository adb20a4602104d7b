"""rtc-monitor — demo entry point.

Wires a ClientMonitor to a synthetic stats source and runs a few
collection cycles, logging every event and issue as it is published.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from rtc_monitor.config import settings
from rtc_monitor.core.client import ClientMonitor
from rtc_monitor.core.channels import MonitorChannels
from rtc_monitor.domain.enums import ConnectionState
from rtc_monitor.domain.events import Issue, MonitorEvent
from rtc_monitor.foundation.clock import now_ms

# ── Logging ──────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

logger = logging.getLogger("rtc_monitor.demo")

DEMO_CYCLES = 8


# ── Synthetic source ─────────────────────────────────────────────────────────

class SyntheticStatsSource:
    """Produces one audio and one video stream in each direction.

    Counters grow every call; from the fourth call on the inbound video
    stops rendering frames and the outbound video becomes bandwidth
    limited, so the demo shows detectors firing.
    """

    def __init__(self) -> None:
        self._polls = 0

    def __call__(self) -> list[dict[str, Any]]:
        self._polls += 1
        n = self._polls
        ts = now_ms()
        degraded = n >= 4
        return [
            {"type": "codec", "id": "CO-audio", "timestamp": ts, "payloadType": 111,
             "mimeType": "audio/opus", "sdpFmtpLine": "minptime=10;useinbandfec=1"},
            {"type": "codec", "id": "CO-video", "timestamp": ts, "payloadType": 98, "mimeType": "video/VP9"},
            {"type": "inbound-rtp", "id": "IT-audio", "timestamp": ts, "ssrc": 1001, "kind": "audio",
             "trackIdentifier": "remote-audio", "codecId": "CO-audio", "bytesReceived": 8000 * n,
             "packetsReceived": 50 * n, "packetsLost": n, "jitterBufferDelay": 0.05 * n,
             "jitterBufferEmittedCount": 48000 * n, "totalSamplesReceived": 96000 * n,
             "insertedSamplesForDeceleration": 100 * n, "removedSamplesForAcceleration": 0},
            {"type": "inbound-rtp", "id": "IT-video", "timestamp": ts, "ssrc": 2001, "kind": "video",
             "trackIdentifier": "remote-video", "codecId": "CO-video", "bytesReceived": 150000 * n,
             "packetsReceived": 200 * n, "packetsLost": 0, "framesReceived": 60 * n,
             "framesRendered": 60 * n if not degraded else 180, "framesDropped": 0,
             "frameWidth": 1280, "frameHeight": 720, "framesPerSecond": 30, "freezeCount": 0},
            {"type": "media-source", "id": "SO-video", "timestamp": ts, "kind": "video",
             "trackIdentifier": "local-video"},
            {"type": "outbound-rtp", "id": "OT-video", "timestamp": ts, "ssrc": 3001, "kind": "video",
             "mediaSourceId": "SO-video", "codecId": "CO-video", "bytesSent": 140000 * n,
             "headerBytesSent": 4000 * n, "packetsSent": 190 * n, "targetBitrate": 1_200_000,
             "frameWidth": 1280, "frameHeight": 720, "framesPerSecond": 30,
             "qualityLimitationReason": "bandwidth" if degraded else "none"},
            {"type": "remote-inbound-rtp", "id": "RI-video", "timestamp": ts, "ssrc": 3001, "kind": "video",
             "localId": "OT-video", "packetsReceived": 188 * n, "packetsLost": 2 * n,
             "roundTripTime": 0.08, "jitter": 0.01},
            {"type": "transport", "id": "T01", "timestamp": ts, "iceState": "connected",
             "selectedCandidatePairId": "CP01"},
            {"type": "candidate-pair", "id": "CP01", "timestamp": ts, "state": "succeeded",
             "transportId": "T01", "localCandidateId": "LC01", "remoteCandidateId": "RC01",
             "nominated": True, "currentRoundTripTime": 0.07,
             "availableOutgoingBitrate": 2_000_000 if not degraded else 600_000},
            {"type": "local-candidate", "id": "LC01", "timestamp": ts, "protocol": "udp",
             "candidateType": "host"},
            {"type": "remote-candidate", "id": "RC01", "timestamp": ts, "protocol": "udp",
             "candidateType": "srflx"},
        ]


# ── Wiring ───────────────────────────────────────────────────────────────────

def _log_event(event: MonitorEvent) -> None:
    logger.info("EVENT %s %s", event.type.value, event.payload)


def _log_issue(issue: Issue) -> None:
    logger.info("ISSUE %s", issue.to_dict())


def build_client() -> ClientMonitor:
    channels = MonitorChannels(backlog_size=settings.channel_backlog_size)
    channels.events.subscribe(_log_event)
    channels.issues.subscribe(_log_issue)
    client = ClientMonitor(
        config=settings.monitor,
        channels=channels,
        max_consecutive_failures=settings.max_consecutive_source_failures,
    )
    connection = client.add_connection(SyntheticStatsSource(), label="demo")
    connection.set_connection_state(ConnectionState.CONNECTING)
    connection.set_connection_state(ConnectionState.CONNECTED)
    return client


async def _run_demo(cycles: int = DEMO_CYCLES) -> None:
    client = build_client()
    try:
        await client.run(period_ms=settings.collecting_period_ms, cycles=cycles)
        for connection in client.connections:
            logger.info(
                "Connection %s: avg_rtt=%s sending=%.0f bps receiving=%.0f bps score=%s",
                connection.connection_id,
                connection.avg_rtt,
                connection.sending_audio_bitrate + connection.sending_video_bitrate,
                connection.receiving_audio_bitrate + connection.receiving_video_bitrate,
                connection.score.value,
            )
        logger.info("Client score after %d cycles: %s", client.cycles, client.score.value)
    finally:
        client.close()


def main() -> None:
    asyncio.run(_run_demo())


if __name__ == "__main__":
    main()
