"""Monitors for the ICE/DTLS layer: transports, candidates and pairs."""

from __future__ import annotations

from typing import Optional

from rtc_monitor.domain.records import (
    IceCandidatePairStats,
    IceCandidateStats,
    IceTransportStats,
    PeerConnectionTransportStats,
)
from rtc_monitor.monitors.base import StatsMonitor


class IceTransportMonitor(StatsMonitor[IceTransportStats]):

    @property
    def ice_state(self) -> Optional[str]:
        return self.stats.ice_state

    def get_selected_candidate_pair(self) -> Optional[IceCandidatePairMonitor]:
        return self._connection.candidate_pairs.get(self.stats.selected_candidate_pair_id)


class IceCandidateMonitor(StatsMonitor[IceCandidateStats]):
    """Local or remote candidate; the record kind tells which."""

    @property
    def protocol(self) -> str:
        return self.stats.protocol

    @property
    def candidate_type(self) -> Optional[str]:
        return self.stats.candidate_type

    @property
    def url(self) -> Optional[str]:
        return self.stats.url


class IceCandidatePairMonitor(StatsMonitor[IceCandidatePairStats]):

    @property
    def state(self) -> str:
        return self.stats.state

    def get_transport(self) -> Optional[IceTransportMonitor]:
        return self._connection.transports.get(self.stats.transport_id)

    def get_local_candidate(self) -> Optional[IceCandidateMonitor]:
        return self._connection.local_candidates.get(self.stats.local_candidate_id)

    def get_remote_candidate(self) -> Optional[IceCandidateMonitor]:
        return self._connection.remote_candidates.get(self.stats.remote_candidate_id)


class PeerConnectionTransportMonitor(StatsMonitor[PeerConnectionTransportStats]):

    @property
    def open_data_channels(self) -> int:
        return self.stats.data_channels_opened - self.stats.data_channels_closed
