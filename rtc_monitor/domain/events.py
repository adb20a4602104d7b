"""Event and issue records published by the monitors.

Events report that something happened (a freeze started, a track went
dry).  Issues are the durable, reportable counterpart a detector opens
when issue creation is enabled for it.  Both are immutable once built:
consumers never receive live monitor objects, only plain payloads.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

from rtc_monitor.domain.enums import EventType, IssueType


class MonitorEvent(BaseModel):
    """One notification on the event channel."""

    type: EventType
    timestamp: float = Field(..., description="Wall-clock ms when the event was raised")
    connection_id: Optional[str] = Field(
        default=None,
        description="Connection the event belongs to, None for client-wide events",
    )
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}


class Issue(BaseModel):
    """A reportable problem: ``{type, payload, timestamp}``."""

    type: IssueType
    timestamp: float
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "payload": dict(self.payload),
            "timestamp": self.timestamp,
        }
