"""CalculatedScore — the score slot every scorable unit carries."""

from __future__ import annotations

from typing import Any, Optional

from rtc_monitor.scores.history import ScoreHistory


class CalculatedScore:
    """``{weight, value, detail}`` plus the history the value is drawn from.

    ``value`` stays None until the history holds enough samples.  ``detail``
    maps a penalty reason to the amount it subtracted in the last cycle.
    """

    __slots__ = ("weight", "value", "detail", "history")

    def __init__(self, weight: float = 1.0) -> None:
        self.weight = weight
        self.value: Optional[float] = None
        self.detail: dict[str, float] = {}
        self.history: Optional[ScoreHistory] = None

    def reset(self) -> None:
        self.value = None
        self.detail = {}
        if self.history is not None:
            self.history.clear()

    def to_dict(self) -> dict[str, Any]:
        return {
            "weight": self.weight,
            "value": self.value,
            "detail": dict(self.detail),
        }
