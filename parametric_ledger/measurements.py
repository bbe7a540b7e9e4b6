"""
Measurement Store — latest published reading per location.

A pure key→value store with overwrite-on-update semantics; no history is
kept. Writes reach this store only through the AdminController gate.

A location that was never published reads as zero, which is below the
drought threshold. Callers that need to tell "zero" apart from "no data"
use lookup() or is_published().
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from parametric_ledger.clock import utc_now
from parametric_ledger.events import EventSink, NullEventSink
from parametric_ledger.schema import (
    UNPUBLISHED_READING,
    LedgerEvent,
    MeasurementRecord,
)

logger = logging.getLogger(__name__)


class MeasurementStore:
    """Holds the most recent MeasurementRecord for every location."""

    def __init__(
        self,
        sink: EventSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.sink = sink if sink is not None else NullEventSink()
        self.clock = clock or utc_now
        self._records: dict[str, MeasurementRecord] = {}

    def publish(self, location: str, value: float) -> MeasurementRecord:
        """Overwrite the reading for a location."""
        record = MeasurementRecord(
            location=location,
            value=value,
            published_at=self.clock(),
        )
        self._records[location] = record

        logger.info("Measurement published: location=%s value=%s", location, value)
        self.sink.emit(
            LedgerEvent.measurement_published(location, record.value)
            .stamped(record.published_at)
        )
        return record.model_copy()

    def read(self, location: str) -> float:
        """Last published value, or zero if the location was never published."""
        record = self._records.get(location)
        return record.value if record is not None else UNPUBLISHED_READING

    def lookup(self, location: str) -> MeasurementRecord | None:
        record = self._records.get(location)
        return record.model_copy() if record is not None else None

    def is_published(self, location: str) -> bool:
        return location in self._records

    def locations(self) -> list[str]:
        return list(self._records)
