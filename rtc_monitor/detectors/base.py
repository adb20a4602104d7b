"""Detector abstraction and the per-host detector collection.

Architectural rules:
    1. A detector is bound to one host (a track, a playout, a connection)
       and keeps only its own activation timestamps and flags.
    2. update() is called once per monitoring cycle and must not block.
    3. Detectors publish through the host connection's channels; they
       never hold references to consumers.
    4. One failing detector never stops the others: Detectors.update()
       isolates every call and logs the failure with the detector name.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterator

logger = logging.getLogger(__name__)


class Detector(ABC):
    """Base class for a per-cycle anomaly detector."""

    name: str = "detector"

    @abstractmethod
    def update(self) -> None:
        """Evaluate the host's current state; emit on transitions."""
        ...


class Detectors:
    """Ordered, growable collection of detectors owned by one host."""

    def __init__(self, *detectors: Detector) -> None:
        self._detectors: list[Detector] = list(detectors)

    def add(self, detector: Detector) -> None:
        self._detectors.append(detector)

    def remove(self, detector: Detector) -> None:
        self._detectors = [d for d in self._detectors if d is not detector]

    def clear(self) -> None:
        self._detectors = []

    def update(self) -> None:
        for detector in list(self._detectors):
            try:
                detector.update()
            except Exception:
                logger.warning("Error updating detector %s", detector.name, exc_info=True)

    @property
    def names(self) -> list[str]:
        return [d.name for d in self._detectors]

    def __len__(self) -> int:
        return len(self._detectors)

    def __iter__(self) -> Iterator[Detector]:
        return iter(list(self._detectors))
