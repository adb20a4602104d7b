"""Detectors bound to a media playout path."""

from __future__ import annotations

from typing import TYPE_CHECKING

from rtc_monitor.detectors.base import Detector
from rtc_monitor.domain.enums import EventType, IssueType

if TYPE_CHECKING:
    from rtc_monitor.config import SynthesizedSamplesDetectorConfig
    from rtc_monitor.monitors.media import MediaPlayoutMonitor


class SynthesizedSamplesDetector(Detector):
    """Reports every cycle in which the playout had to synthesize audio.

    Synthesized samples are generated when the jitter buffer runs dry, so
    any interval with more synthesized duration than the configured
    minimum is reported.  An issue is opened once per episode.
    """

    name = "synthesized-samples-detector"

    def __init__(self, playout: MediaPlayoutMonitor) -> None:
        self._playout = playout
        self.active = False

    @property
    def _config(self) -> SynthesizedSamplesDetectorConfig:
        return self._playout.connection.config.synthesized_samples

    def update(self) -> None:
        config = self._config
        if config.disabled:
            return
        synthesized = self._playout.delta_synthesized_samples_duration
        if synthesized <= config.min_synthesized_samples_duration:
            self.active = False
            return

        connection = self._playout.connection
        connection.channels.emit(
            EventType.SYNTHESIZED_SAMPLES,
            connection.connection_id,
            media_playout_id=self._playout.id,
            synthesized_samples_duration=synthesized,
        )
        if not self.active and config.create_issue:
            connection.channels.add_issue(
                IssueType.SYNTHESIZED_SAMPLES,
                peerConnectionId=connection.connection_id,
                mediaPlayoutId=self._playout.id,
                duration=synthesized,
            )
        self.active = True
