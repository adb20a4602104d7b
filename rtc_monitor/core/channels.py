"""Typed event and issue channels.

Design notes:
    - A Channel is an explicit callback registry plus a bounded backlog.
      Monitors receive the channels they publish to at construction time;
      there is no global emitter.
    - A subscriber that raises is logged and skipped.  Publishing never
      fails the monitoring cycle that triggered it.
    - The backlog keeps the most recent items so pull-style consumers can
      drain them after a cycle instead of subscribing.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Generic, Optional, TypeVar

from rtc_monitor.domain.enums import EventType, IssueType
from rtc_monitor.domain.events import Issue, MonitorEvent
from rtc_monitor.foundation.clock import now_ms

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Channel(Generic[T]):
    """Fan-out of one item type to registered callbacks."""

    def __init__(self, name: str, backlog_size: int = 256) -> None:
        self.name = name
        self._subscribers: list[Callable[[T], None]] = []
        self._backlog: deque[T] = deque(maxlen=backlog_size)
        self.published_count: int = 0

    def subscribe(self, callback: Callable[[T], None]) -> Callable[[], None]:
        """Register *callback*; returns a function that unregisters it."""
        self._subscribers.append(callback)
        return lambda: self.unsubscribe(callback)

    def unsubscribe(self, callback: Callable[[T], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def publish(self, item: T) -> None:
        self._backlog.append(item)
        self.published_count += 1
        for callback in list(self._subscribers):
            try:
                callback(item)
            except Exception:
                logger.warning(
                    "Subscriber %r of channel '%s' failed",
                    callback,
                    self.name,
                    exc_info=True,
                )

    def drain(self) -> list[T]:
        """Return and forget everything in the backlog."""
        items = list(self._backlog)
        self._backlog.clear()
        return items

    @property
    def backlog(self) -> list[T]:
        return list(self._backlog)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)


class MonitorChannels:
    """The pair of channels every monitor publishes to."""

    def __init__(self, backlog_size: int = 256) -> None:
        self.events: Channel[MonitorEvent] = Channel("events", backlog_size)
        self.issues: Channel[Issue] = Channel("issues", backlog_size)

    def emit(
        self,
        event_type: EventType,
        connection_id: Optional[str] = None,
        **payload: Any,
    ) -> MonitorEvent:
        event = MonitorEvent(
            type=event_type,
            timestamp=now_ms(),
            connection_id=connection_id,
            payload=payload,
        )
        logger.info("Event %s (connection=%s)", event_type.value, connection_id)
        self.events.publish(event)
        return event

    def add_issue(self, issue_type: IssueType, **payload: Any) -> Issue:
        issue = Issue(type=issue_type, timestamp=now_ms(), payload=payload)
        logger.info("Issue %s opened: %s", issue_type.value, payload)
        self.issues.publish(issue)
        return issue
