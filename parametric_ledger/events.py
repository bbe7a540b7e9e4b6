"""
Event sinks — the notification interface between ledger components and
external observability.

Components never keep an audit trail themselves. After a state change is
committed they hand a LedgerEvent to whatever EventSink they were built
with. Inside InsuranceContract that sink is a BufferedEventSink, so nothing
reaches an observer until the whole operation has committed. The in-memory log here chains events with SHA-256 the same way the
SQL event ledger does, so either can be verified independently.
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from parametric_ledger.schema import ChainedEvent, EventType, LedgerEvent

logger = logging.getLogger(__name__)

GENESIS_HASH = "0" * 64  # The "previous hash" for the first event in a chain


class EventSink(Protocol):
    """Receives every event a component emits, in commit order."""

    def emit(self, event: LedgerEvent) -> None: ...


class NullEventSink:
    """Discards events. Used when no observer is configured."""

    def emit(self, event: LedgerEvent) -> None:
        return None


class CompositeEventSink:
    """Forwards each event to several sinks in order."""

    def __init__(self, sinks: Iterable[EventSink]) -> None:
        self.sinks = list(sinks)

    def emit(self, event: LedgerEvent) -> None:
        for sink in self.sinks:
            sink.emit(event)


class BufferedEventSink:
    """
    Holds events until the operation that produced them has committed.

    flush() delivers the pending events to the target in emit order. A
    delivery failure is logged and does not undo the committed state; the
    remaining events are still delivered. discard() drops the pending events
    of an operation that failed.

    Usage:
        buffer = BufferedEventSink(log)
        ledger = PolicyLedger(sink=buffer)
        ledger.create_policy("alice", 1000, 30, "X", 50)
        buffer.flush()  # PolicyCreated reaches log here
    """

    def __init__(self, target: EventSink) -> None:
        self.target = target
        self._pending: list[LedgerEvent] = []

    def emit(self, event: LedgerEvent) -> None:
        self._pending.append(event)

    @property
    def pending(self) -> list[LedgerEvent]:
        return list(self._pending)

    def discard(self) -> None:
        self._pending.clear()

    def flush(self) -> int:
        """Deliver pending events; returns how many the target accepted."""
        pending, self._pending = self._pending, []
        delivered = 0
        for event in pending:
            try:
                self.target.emit(event)
            except Exception:
                logger.exception(
                    "Event delivery failed: type=%s payload=%s",
                    event.event_type.value, event.payload,
                )
                continue
            delivered += 1
        return delivered


class InMemoryEventLog:
    """
    Append-only, hash-chained event log held in memory.

    Usage:
        log = InMemoryEventLog()
        contract = InsuranceContract(authority="authority", sink=log)
        ...
        assert log.verify_chain()[0]
    """

    def __init__(self) -> None:
        self._entries: list[ChainedEvent] = []

    def emit(self, event: LedgerEvent) -> None:
        previous_hash = self._entries[-1].entry_hash if self._entries else GENESIS_HASH
        entry = ChainedEvent(
            sequence_number=len(self._entries) + 1,
            previous_hash=previous_hash,
            event=event,
        )
        entry.entry_hash = entry.compute_hash()
        self._entries.append(entry)
        logger.debug(
            "Event recorded: seq=%d type=%s hash=%s",
            entry.sequence_number, event.event_type.value, entry.entry_hash[:16],
        )

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def entries(self) -> list[ChainedEvent]:
        return list(self._entries)

    def events(self, event_type: EventType | None = None) -> list[LedgerEvent]:
        """Emitted events in order, optionally filtered by type."""
        return [
            entry.event for entry in self._entries
            if event_type is None or entry.event.event_type == event_type
        ]

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Recompute every hash and check chain linkage.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        previous_hash = GENESIS_HASH
        for i, entry in enumerate(self._entries):
            if entry.previous_hash != previous_hash:
                return (
                    False, i,
                    f"Chain break at sequence {entry.sequence_number}: "
                    f"previous_hash does not match prior entry's hash",
                )
            expected = entry.compute_hash()
            if entry.entry_hash != expected:
                return (
                    False, i,
                    f"Hash mismatch at sequence {entry.sequence_number}: "
                    f"stored={entry.entry_hash[:16]}... computed={expected[:16]}...",
                )
            previous_hash = entry.entry_hash

        return (
            True, len(self._entries),
            f"Chain verified: {len(self._entries)} events, integrity intact",
        )
