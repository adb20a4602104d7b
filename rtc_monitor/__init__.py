from rtc_monitor.classifier.classifier import MalformedRecordError, RecordClassifier
from rtc_monitor.config import MonitorConfig
from rtc_monitor.core.channels import MonitorChannels
from rtc_monitor.core.client import ClientMonitor, MonitorClosedError
from rtc_monitor.core.connection import ConnectionMonitor
from rtc_monitor.domain.events import Issue, MonitorEvent
from rtc_monitor.scores.calculator import DefaultScoreCalculator
from rtc_monitor.scores.mos import calculate_audio_mos, calculate_video_mos
from rtc_monitor.store.indexed_store import IndexedStore

__all__ = [
    "ClientMonitor",
    "ConnectionMonitor",
    "DefaultScoreCalculator",
    "IndexedStore",
    "Issue",
    "MalformedRecordError",
    "MonitorChannels",
    "MonitorClosedError",
    "MonitorConfig",
    "MonitorEvent",
    "RecordClassifier",
    "calculate_audio_mos",
    "calculate_video_mos",
]
