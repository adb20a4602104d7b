"""ClientMonitor — the top-level owner of every monitored connection.

Design notes:
    - Each connection is registered together with its stats source, a
      callable returning a batch of raw records.  Sources may be plain
      functions or coroutine functions; collect() awaits the latter.
    - collect() is the only place that suspends.  Once a batch is in
      hand it runs ConnectionMonitor.accept() and the score calculator
      synchronously, so cycles never interleave.
    - A source that raises is counted, not retried.  After
      ``max_consecutive_failures`` failures in a row the client asks for
      the source to be torn down and stops polling it.
    - Closing the client closes every connection it owns.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

from rtc_monitor.config import MonitorConfig
from rtc_monitor.core.channels import MonitorChannels
from rtc_monitor.core.connection import ConnectionMonitor, RawRecord
from rtc_monitor.domain.enums import EventType
from rtc_monitor.foundation.clock import now_ms
from rtc_monitor.foundation.identifiers import new_id
from rtc_monitor.scores.calculated import CalculatedScore
from rtc_monitor.scores.calculator import DefaultScoreCalculator

logger = logging.getLogger(__name__)

StatsBatch = Iterable[RawRecord]
StatsSource = Callable[[], Union[StatsBatch, Awaitable[StatsBatch]]]


class MonitorClosedError(Exception):
    """Raised when a closed ClientMonitor is asked to do work."""

    def __init__(self, client_id: str) -> None:
        self.client_id = client_id
        super().__init__(f"Client monitor '{client_id}' is closed")


class _SourceBinding:
    """A connection together with the callable that feeds it."""

    __slots__ = ("connection", "source", "consecutive_failures", "torn_down")

    def __init__(self, connection: ConnectionMonitor, source: StatsSource) -> None:
        self.connection = connection
        self.source = source
        self.consecutive_failures = 0
        self.torn_down = False


class ClientMonitor:
    """Polls every registered source once per cycle and scores the result.

    Args:
        config: Detector and scoring configuration shared by all connections.
        channels: Event and issue channels; created if omitted.
        max_consecutive_failures: Source failures in a row before teardown.
        score_calculator: Replaces DefaultScoreCalculator when given.
        client_id: Stable id of this client; generated if omitted.
    """

    def __init__(
        self,
        config: Optional[MonitorConfig] = None,
        channels: Optional[MonitorChannels] = None,
        max_consecutive_failures: int = 3,
        score_calculator: Optional[DefaultScoreCalculator] = None,
        client_id: Optional[str] = None,
    ) -> None:
        if max_consecutive_failures < 1:
            raise ValueError("max_consecutive_failures must be at least 1")
        self.client_id: str = client_id or new_id()
        self.config: MonitorConfig = config or MonitorConfig()
        self.channels: MonitorChannels = channels or MonitorChannels()
        self.max_consecutive_failures = max_consecutive_failures
        self.score = CalculatedScore()
        self.closed = False
        self.cycles = 0
        self.last_collected_at: Optional[float] = None
        self._score_calculator = score_calculator or DefaultScoreCalculator(self.config.scoring)
        self._bindings: dict[str, _SourceBinding] = {}
        self._collecting = False

    # ── Connections ──────────────────────────────────────────────────────

    def add_connection(
        self,
        source: StatsSource,
        connection_id: Optional[str] = None,
        label: Optional[str] = None,
    ) -> ConnectionMonitor:
        """Register a new connection fed by *source*."""
        self._ensure_open()
        if connection_id is not None and connection_id in self._bindings:
            raise ValueError(f"Connection '{connection_id}' is already monitored")
        connection = ConnectionMonitor(
            connection_id=connection_id,
            config=self.config,
            channels=self.channels,
            label=label,
        )
        self._bindings[connection.connection_id] = _SourceBinding(connection, source)
        logger.info("Client %s now monitors connection %s", self.client_id, connection.connection_id)
        return connection

    def remove_connection(self, connection_id: str) -> Optional[ConnectionMonitor]:
        """Stop monitoring *connection_id* and close its monitor."""
        binding = self._bindings.pop(connection_id, None)
        if binding is None:
            return None
        binding.connection.close()
        logger.info("Client %s stopped monitoring connection %s", self.client_id, connection_id)
        return binding.connection

    def get_connection(self, connection_id: str) -> Optional[ConnectionMonitor]:
        binding = self._bindings.get(connection_id)
        return binding.connection if binding is not None else None

    @property
    def connections(self) -> list[ConnectionMonitor]:
        return [binding.connection for binding in self._bindings.values()]

    def is_polling(self, connection_id: str) -> bool:
        binding = self._bindings.get(connection_id)
        return binding is not None and not binding.torn_down

    # ── Collection ───────────────────────────────────────────────────────

    async def collect(self) -> None:
        """Poll every active source once, then update the scores."""
        self._ensure_open()
        if self._collecting:
            logger.debug("Client %s is already collecting; cycle skipped", self.client_id)
            return
        self._collecting = True
        started_at = now_ms()
        try:
            for binding in list(self._bindings.values()):
                if binding.torn_down:
                    continue
                batch = await self._poll(binding)
                if batch is None or self.closed:
                    continue
                binding.connection.accept(batch)
            if self.closed:
                return
            if not self.config.scoring.disabled:
                self._score_calculator.update(self)
                self.channels.emit(
                    EventType.SCORE,
                    None,
                    client_id=self.client_id,
                    client_score=self.score.value,
                    remarks=sorted(self.score.detail),
                )
            self.cycles += 1
            self.last_collected_at = now_ms()
            self.channels.emit(
                EventType.STATS_COLLECTED,
                None,
                client_id=self.client_id,
                connections=len(self._bindings),
                elapsed_ms=self.last_collected_at - started_at,
                score=self.score.value,
            )
        finally:
            self._collecting = False

    async def run(self, period_ms: float = 2000.0, cycles: Optional[int] = None) -> None:
        """Collect every *period_ms* until closed, or for *cycles* cycles."""
        completed = 0
        while not self.closed and (cycles is None or completed < cycles):
            await self.collect()
            completed += 1
            if cycles is not None and completed >= cycles:
                break
            await asyncio.sleep(period_ms / 1000.0)

    async def _poll(self, binding: _SourceBinding) -> Optional[list[Any]]:
        connection_id = binding.connection.connection_id
        try:
            result = binding.source()
            if inspect.isawaitable(result):
                result = await result
            batch = list(result)
        except Exception as exc:
            binding.consecutive_failures += 1
            logger.warning(
                "Collecting stats for connection %s failed (%d in a row): %s",
                connection_id,
                binding.consecutive_failures,
                exc,
            )
            self.channels.emit(
                EventType.STATS_COLLECTING_FAILED,
                connection_id,
                error=str(exc),
                consecutive_failures=binding.consecutive_failures,
            )
            if binding.consecutive_failures >= self.max_consecutive_failures:
                binding.torn_down = True
                logger.warning("Requesting teardown of the stats source of connection %s", connection_id)
                self.channels.emit(
                    EventType.SOURCE_TEARDOWN_REQUESTED,
                    connection_id,
                    consecutive_failures=binding.consecutive_failures,
                )
            return None
        binding.consecutive_failures = 0
        return batch

    # ── Lifecycle & output ───────────────────────────────────────────────

    def close(self) -> None:
        """Close every connection.  Idempotent."""
        if self.closed:
            return
        self.closed = True
        for binding in self._bindings.values():
            binding.connection.close()
        self._bindings.clear()
        logger.info("Client monitor %s closed after %d cycles", self.client_id, self.cycles)

    def create_sample(self) -> dict[str, Any]:
        self._ensure_open()
        return {
            "clientId": self.client_id,
            "timestamp": now_ms(),
            "score": self.score.value,
            "scoreReasons": dict(self.score.detail),
            "peerConnections": [connection.create_sample() for connection in self.connections],
        }

    def _ensure_open(self) -> None:
        if self.closed:
            raise MonitorClosedError(self.client_id)
