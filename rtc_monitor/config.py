"""Application configuration loaded from environment variables.

Detector and scoring settings form a flat object keyed by detector name;
each entry carries ``disabled``, ``create_issue`` and its thresholds.
Nested values can be overridden from the environment with a double
underscore, e.g. ``RTCMON_MONITOR__DRY_INBOUND_TRACK__THRESHOLD_IN_MS=3000``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings


# ── Detector configuration ───────────────────────────────────────────────────

class DetectorConfig(BaseModel):
    disabled: bool = False
    create_issue: bool = True


class DryTrackDetectorConfig(DetectorConfig):
    threshold_in_ms: float = Field(default=5000.0, gt=0)


class PlayoutDiscrepancyDetectorConfig(DetectorConfig):
    high_skew_threshold: int = Field(default=10, ge=1)
    low_skew_threshold: int = Field(default=3, ge=0)

    @model_validator(mode="after")
    def low_not_above_high(self) -> PlayoutDiscrepancyDetectorConfig:
        if self.low_skew_threshold > self.high_skew_threshold:
            raise ValueError("low_skew_threshold must not exceed high_skew_threshold")
        return self


class SynthesizedSamplesDetectorConfig(DetectorConfig):
    min_synthesized_samples_duration: float = Field(default=0.0, ge=0)


class AudioDesyncDetectorConfig(DetectorConfig):
    fractional_correction_alert_on_threshold: float = Field(default=0.3, gt=0, le=1)
    fractional_correction_alert_off_threshold: float = Field(default=0.15, ge=0, le=1)

    @model_validator(mode="after")
    def off_not_above_on(self) -> AudioDesyncDetectorConfig:
        if self.fractional_correction_alert_off_threshold > self.fractional_correction_alert_on_threshold:
            raise ValueError("off threshold must not exceed on threshold")
        return self


class LongPcConnectionEstablishmentDetectorConfig(DetectorConfig):
    threshold_in_ms: float = Field(default=3000.0, gt=0)


class ScoringConfig(BaseModel):
    disabled: bool = False
    history_max_length: int = Field(default=10, ge=1)
    history_min_length: int = Field(default=5, ge=1)
    outbound_stability_window_length: int = Field(default=10, ge=2)

    @model_validator(mode="after")
    def min_not_above_max(self) -> ScoringConfig:
        if self.history_min_length > self.history_max_length:
            raise ValueError("history_min_length must not exceed history_max_length")
        return self


class MonitorConfig(BaseModel):
    """Everything a ConnectionMonitor and its detectors read."""

    dry_inbound_track: DryTrackDetectorConfig = Field(default_factory=DryTrackDetectorConfig)
    dry_outbound_track: DryTrackDetectorConfig = Field(default_factory=DryTrackDetectorConfig)
    playout_discrepancy: PlayoutDiscrepancyDetectorConfig = Field(
        default_factory=PlayoutDiscrepancyDetectorConfig
    )
    freezed_video: DetectorConfig = Field(default_factory=DetectorConfig)
    synthesized_samples: SynthesizedSamplesDetectorConfig = Field(
        default_factory=SynthesizedSamplesDetectorConfig
    )
    audio_desync: AudioDesyncDetectorConfig = Field(default_factory=AudioDesyncDetectorConfig)
    congestion: DetectorConfig = Field(default_factory=DetectorConfig)
    cpu_performance: DetectorConfig = Field(default_factory=DetectorConfig)
    long_pc_connection_establishment: LongPcConnectionEstablishmentDetectorConfig = Field(
        default_factory=LongPcConnectionEstablishmentDetectorConfig
    )
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)


# ── Application settings ─────────────────────────────────────────────────────

class Settings(BaseSettings):
    app_name: str = "rtc-monitor"
    debug: bool = False
    log_level: str = "INFO"

    # Collection loop
    collecting_period_ms: int = 2000
    max_consecutive_source_failures: int = 3
    channel_backlog_size: int = 256

    monitor: MonitorConfig = Field(default_factory=MonitorConfig)

    model_config = {"env_prefix": "RTCMON_", "env_nested_delimiter": "__"}


settings = Settings()
