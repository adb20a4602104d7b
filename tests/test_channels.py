"""Tests for event and issue channels."""

from __future__ import annotations

import logging

import pytest
from pydantic import ValidationError

from rtc_monitor.core.channels import Channel, MonitorChannels
from rtc_monitor.domain.enums import EventType, IssueType


class TestChannel:
    def test_subscribers_receive_items_in_order(self) -> None:
        channel: Channel[int] = Channel("numbers")
        seen: list[int] = []
        channel.subscribe(seen.append)
        for n in (1, 2, 3):
            channel.publish(n)
        assert seen == [1, 2, 3]
        assert channel.published_count == 3

    def test_failing_subscriber_does_not_stop_others(self, caplog: pytest.LogCaptureFixture) -> None:
        channel: Channel[str] = Channel("words")
        seen: list[str] = []

        def explode(item: str) -> None:
            raise RuntimeError(item)

        channel.subscribe(explode)
        channel.subscribe(seen.append)
        with caplog.at_level(logging.WARNING, logger="rtc_monitor.core.channels"):
            channel.publish("hello")
        assert seen == ["hello"]
        assert "words" in caplog.text

    def test_unsubscribe_handle(self) -> None:
        channel: Channel[int] = Channel("numbers")
        seen: list[int] = []
        unsubscribe = channel.subscribe(seen.append)
        channel.publish(1)
        unsubscribe()
        channel.publish(2)
        assert seen == [1]
        assert channel.subscriber_count == 0

    def test_unsubscribe_unknown_callback_is_noop(self) -> None:
        channel: Channel[int] = Channel("numbers")
        channel.unsubscribe(print)
        assert channel.subscriber_count == 0

    def test_backlog_is_bounded(self) -> None:
        channel: Channel[int] = Channel("numbers", backlog_size=3)
        for n in range(5):
            channel.publish(n)
        assert channel.backlog == [2, 3, 4]
        assert channel.published_count == 5

    def test_drain_empties_backlog(self) -> None:
        channel: Channel[int] = Channel("numbers")
        channel.publish(1)
        channel.publish(2)
        assert channel.drain() == [1, 2]
        assert channel.backlog == []


class TestMonitorChannels:
    def test_emit_builds_event(self) -> None:
        channels = MonitorChannels()
        event = channels.emit(EventType.CONGESTION, "pc-1", available_outgoing_bitrate_after=1.0)
        assert event.type == EventType.CONGESTION
        assert event.connection_id == "pc-1"
        assert event.payload == {"available_outgoing_bitrate_after": 1.0}
        assert channels.events.backlog == [event]

    def test_add_issue_builds_issue(self) -> None:
        channels = MonitorChannels()
        issue = channels.add_issue(IssueType.DRY_INBOUND_TRACK, trackId="t1", duration=5000)
        assert channels.issues.backlog == [issue]
        assert issue.to_dict()["type"] == "dry-inbound-track"
        assert issue.to_dict()["payload"] == {"trackId": "t1", "duration": 5000}

    def test_event_is_immutable(self) -> None:
        event = MonitorChannels().emit(EventType.SCORE)
        with pytest.raises(ValidationError):
            event.connection_id = "other"  # type: ignore[misc]
