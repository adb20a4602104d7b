"""CodecMonitor — a negotiated payload type."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

from rtc_monitor.domain.records import CodecStats
from rtc_monitor.monitors.base import StatsMonitor

if TYPE_CHECKING:
    from rtc_monitor.monitors.ice import IceTransportMonitor


class CodecMonitor(StatsMonitor[CodecStats]):

    @property
    def mime_type(self) -> str:
        return self.stats.mime_type

    @property
    def name(self) -> str:
        """Lower-cased codec name, e.g. ``vp9`` for ``video/VP9``."""
        return self.stats.mime_type.split("/")[-1].lower()

    def get_transport(self) -> Optional[IceTransportMonitor]:
        return self._connection.transports.get(self.stats.transport_id)
