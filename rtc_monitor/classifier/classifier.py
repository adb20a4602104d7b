"""Record Classifier — maps raw stat mappings onto typed records.

A raw record is classified by its ``type`` key into one model of the
closed set in rtc_monitor.domain.records, then dispatched to exactly one
handler chosen by that kind.

Rules:
    1. The classifier never mutates the incoming mapping.
    2. classify() returns a valid typed record, an UnrecognizedRecord,
       or raises MalformedRecordError.  Nothing else.
    3. dispatch() holds no state and has no side effects beyond calling
       the chosen handler.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping
from typing import Any, Callable, Optional

from pydantic import ValidationError

from rtc_monitor.domain.enums import StatsKind
from rtc_monitor.domain.records import (
    RECORD_MODELS,
    ClassifiedRecord,
    StatsRecord,
    UnrecognizedRecord,
)

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Any]


class MalformedRecordError(Exception):
    """Raised when a record lacks the fields its kind requires."""

    def __init__(self, kind: str, reason: str) -> None:
        self.kind = kind
        self.reason = reason
        super().__init__(f"Malformed '{kind}' record: {reason}")


def _missing_fields(exc: ValidationError) -> list[str]:
    return sorted(
        str(err["loc"][0])
        for err in exc.errors()
        if err["type"] == "missing" and err["loc"]
    )


class RecordClassifier:
    """Stateless classification and dispatch of stat records.

    Usage:
        classifier = RecordClassifier()
        record = classifier.classify(raw)
        classifier.dispatch(record, {StatsKind.CODEC: on_codec, ...})
    """

    def classify(self, raw: Mapping[str, Any] | StatsRecord) -> ClassifiedRecord:
        """Turn *raw* into a typed record.

        Raises:
            MalformedRecordError: If the id or timestamp is missing, or a
                known kind lacks one of its required fields.
        """
        if isinstance(raw, (StatsRecord, UnrecognizedRecord)):
            return raw
        if not isinstance(raw, Mapping):
            raise MalformedRecordError("?", f"expected a mapping, got {type(raw).__name__}")

        raw_type = raw.get("type")
        record_id = raw.get("id")
        if not isinstance(raw_type, str) or not raw_type:
            raise MalformedRecordError("?", "missing record type")
        if not isinstance(record_id, str) or not record_id:
            raise MalformedRecordError(raw_type, "missing id")
        timestamp = raw.get("timestamp")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise MalformedRecordError(raw_type, "missing or non-numeric timestamp")
        if not math.isfinite(timestamp):
            raise MalformedRecordError(raw_type, f"non-finite timestamp {timestamp!r}")

        try:
            kind = StatsKind(raw_type)
        except ValueError:
            return UnrecognizedRecord(raw_type=raw_type, id=record_id)
        if kind == StatsKind.UNRECOGNIZED:
            return UnrecognizedRecord(raw_type=raw_type, id=record_id)

        model = RECORD_MODELS[kind]
        try:
            return model.model_validate(raw)
        except ValidationError as exc:
            missing = _missing_fields(exc)
            if missing:
                reason = f"missing required field(s) {missing}"
            else:
                reason = f"{exc.error_count()} invalid field(s)"
            raise MalformedRecordError(kind.value, reason) from exc

    def dispatch(
        self,
        record: ClassifiedRecord,
        handlers: Mapping[StatsKind, Handler],
    ) -> Optional[Any]:
        """Invoke the single handler registered for the record's kind.

        Unrecognized records, and kinds with no handler, invoke nothing.
        """
        if isinstance(record, UnrecognizedRecord):
            logger.debug("Ignoring unrecognized record type %r", record.raw_type)
            return None
        handler = handlers.get(record.record_kind)
        if handler is None:
            return None
        return handler(record)
