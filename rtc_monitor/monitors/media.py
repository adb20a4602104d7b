"""Monitors for local media sources and remote media playout."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rtc_monitor.detectors.base import Detectors
from rtc_monitor.detectors.playout import SynthesizedSamplesDetector
from rtc_monitor.domain.enums import MediaKind
from rtc_monitor.domain.records import MediaPlayoutStats, MediaSourceStats
from rtc_monitor.monitors.base import StatsMonitor, delta

if TYPE_CHECKING:
    from rtc_monitor.core.connection import ConnectionMonitor
    from rtc_monitor.monitors.tracks import OutboundTrackMonitor


class MediaSourceMonitor(StatsMonitor[MediaSourceStats]):
    """A captured track feeding one or more outbound streams."""

    @property
    def kind(self) -> MediaKind:
        return self.stats.kind

    @property
    def track_identifier(self) -> str:
        return self.stats.track_identifier

    def get_track(self) -> Optional[OutboundTrackMonitor]:
        return self._connection.outbound_tracks.get(self.track_identifier)


class MediaPlayoutMonitor(StatsMonitor[MediaPlayoutStats]):
    """Audio playout path; owns the synthesized-samples detector."""

    def __init__(self, connection: ConnectionMonitor, stats: MediaPlayoutStats) -> None:
        super().__init__(connection, stats)
        self.delta_synthesized_samples_duration: float = 0.0
        self.delta_samples_duration: float = 0.0
        self.detectors = Detectors(SynthesizedSamplesDetector(self))

    @property
    def kind(self) -> MediaKind:
        return self.stats.kind

    def _update_derived(
        self,
        previous: MediaPlayoutStats,
        current: MediaPlayoutStats,
        elapsed_sec: float,
    ) -> None:
        synthesized = delta(current.synthesized_samples_duration, previous.synthesized_samples_duration)
        if synthesized is not None:
            self.delta_synthesized_samples_duration = synthesized
        samples = delta(current.total_samples_duration, previous.total_samples_duration)
        if samples is not None:
            self.delta_samples_duration = samples
