"""CertificateMonitor — DTLS certificate in use."""

from __future__ import annotations

from rtc_monitor.domain.records import CertificateStats
from rtc_monitor.monitors.base import StatsMonitor


class CertificateMonitor(StatsMonitor[CertificateStats]):

    @property
    def fingerprint(self) -> str:
        return self.stats.fingerprint
