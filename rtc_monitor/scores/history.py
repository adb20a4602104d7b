"""Bounded score history with a linearly weighted mean.

The newest sample weighs the most: with n samples the i-th oldest
(1-based) has weight i, so the mean is sum(i * v_i) / sum(i).
"""

from __future__ import annotations

from collections import deque
from typing import Iterable, Optional


def weighted_mean(values: Iterable[float]) -> Optional[float]:
    total = 0.0
    weights = 0
    for position, value in enumerate(values, start=1):
        total += position * value
        weights += position
    if weights == 0:
        return None
    return total / weights


class ScoreHistory:
    """Sliding window that only publishes once it holds *min_length* samples."""

    __slots__ = ("max_length", "min_length", "_values")

    def __init__(self, max_length: int = 10, min_length: int = 5) -> None:
        if min_length > max_length:
            raise ValueError("min_length must not exceed max_length")
        self.max_length = max_length
        self.min_length = min_length
        self._values: deque[float] = deque(maxlen=max_length)

    def push(self, value: float) -> Optional[float]:
        """Append *value* and return the published mean, or None if too short."""
        self._values.append(value)
        return self.value

    @property
    def value(self) -> Optional[float]:
        if len(self._values) < self.min_length:
            return None
        return weighted_mean(self._values)

    def clear(self) -> None:
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)

    @property
    def values(self) -> list[float]:
        return list(self._values)
