"""
Event Ledger Service — Append-only, hash-chained persistence of ledger events.

This service is an EventSink: pass it to InsuranceContract and every
committed state change is written as one row. It provides:
- Append new events with automatic hash chain computation
- Verify the integrity of the full hash chain
- Query events by type or recency
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import create_engine, func, inspect, select
from sqlalchemy.orm import sessionmaker

from parametric_ledger.errors import LedgerIntegrityError
from parametric_ledger.events import GENESIS_HASH
from parametric_ledger.ledger.models import Base, EventEntryDB
from parametric_ledger.schema import EventType, LedgerEvent, compute_event_hash

logger = logging.getLogger(__name__)


class EventLedgerService:
    """
    Persistent event log backed by any SQLAlchemy database.

    Usage:
        service = EventLedgerService("sqlite:///events.db")
        service.initialize()  # Create tables, seed genesis entry

        contract = InsuranceContract(authority="authority", sink=service)
        ...
        service.verify_chain()  # (True, n, "Chain verified: ...")
    """

    def __init__(self, database_url: str) -> None:
        """
        Args:
            database_url: SQLAlchemy connection string (sync driver).
        """
        self.engine = create_engine(database_url, echo=False)
        self.SessionLocal = sessionmaker(bind=self.engine)

    def initialize(self) -> None:
        """Create the schema and seed the genesis entry if it is missing."""
        Base.metadata.create_all(self.engine)

        with self.SessionLocal() as session:
            existing = session.execute(
                select(EventEntryDB).where(EventEntryDB.sequence_number == 0)
            ).scalar_one_or_none()

            if existing is None:
                genesis = self._create_genesis_entry()
                session.add(genesis)
                session.commit()
                logger.info("Genesis entry created: hash=%s", genesis.entry_hash[:16])

    def _create_genesis_entry(self) -> EventEntryDB:
        timestamp = datetime.now(timezone.utc).isoformat()
        payload = {"message": "Genesis of the parametric insurance event ledger"}
        entry_hash = compute_event_hash(
            sequence_number=0,
            previous_hash=GENESIS_HASH,
            timestamp=timestamp,
            event_type=EventType.GENESIS.value,
            payload=payload,
        )
        return EventEntryDB(
            sequence_number=0,
            previous_hash=GENESIS_HASH,
            entry_hash=entry_hash,
            timestamp=timestamp,
            event_type=EventType.GENESIS.value,
            payload=payload,
        )

    def emit(self, event: LedgerEvent) -> None:
        self.append(event)

    def append(self, event: LedgerEvent) -> EventEntryDB:
        """
        Append one event. This is the ONLY write operation.

        Raises:
            LedgerIntegrityError: If the genesis entry has not been created.
        """
        with self.SessionLocal() as session:
            last_entry = session.execute(
                select(EventEntryDB)
                .order_by(EventEntryDB.sequence_number.desc())
                .limit(1)
            ).scalar_one_or_none()

            if last_entry is None:
                raise LedgerIntegrityError(
                    "Cannot append: no genesis entry found. Call initialize() first."
                )

            new_seq = last_entry.sequence_number + 1
            previous_hash = last_entry.entry_hash
            timestamp = event.timestamp.isoformat()
            payload = event.model_dump(mode="json")["payload"]

            entry_hash = compute_event_hash(
                sequence_number=new_seq,
                previous_hash=previous_hash,
                timestamp=timestamp,
                event_type=event.event_type.value,
                payload=payload,
            )

            entry = EventEntryDB(
                sequence_number=new_seq,
                previous_hash=previous_hash,
                entry_hash=entry_hash,
                timestamp=timestamp,
                event_type=event.event_type.value,
                payload=payload,
            )

            session.add(entry)
            session.commit()
            session.refresh(entry)

            logger.info(
                "Event appended: seq=%d type=%s hash=%s",
                new_seq, event.event_type.value, entry_hash[:16],
            )
            return entry

    def verify_chain(self) -> tuple[bool, int, str]:
        """
        Walk every entry from genesis forward, recomputing each hash.

        Returns:
            Tuple of (is_valid, entries_verified, message).
        """
        with self.SessionLocal() as session:
            entries = session.execute(
                select(EventEntryDB).order_by(EventEntryDB.sequence_number.asc())
            ).scalars().all()

            if not entries:
                return False, 0, "No entries found in event ledger"

            first = entries[0]
            if first.sequence_number != 0:
                return False, 0, f"First entry has sequence {first.sequence_number}, expected 0"
            if first.previous_hash != GENESIS_HASH:
                return False, 0, "Genesis entry has incorrect previous_hash"

            for i, entry in enumerate(entries):
                expected_hash = compute_event_hash(
                    sequence_number=entry.sequence_number,
                    previous_hash=entry.previous_hash,
                    timestamp=entry.timestamp,
                    event_type=entry.event_type,
                    payload=entry.payload,
                )
                if entry.entry_hash != expected_hash:
                    return (
                        False, i,
                        f"Hash mismatch at sequence {entry.sequence_number}: "
                        f"stored={entry.entry_hash[:16]}... "
                        f"computed={expected_hash[:16]}..."
                    )

                if i > 0 and entry.previous_hash != entries[i - 1].entry_hash:
                    return (
                        False, i,
                        f"Chain break at sequence {entry.sequence_number}: "
                        f"previous_hash does not match prior entry's hash"
                    )

            return (
                True, len(entries),
                f"Chain verified: {len(entries)} entries, integrity intact"
            )

    def get_by_sequence(self, sequence_number: int) -> EventEntryDB | None:
        with self.SessionLocal() as session:
            return session.execute(
                select(EventEntryDB).where(
                    EventEntryDB.sequence_number == sequence_number
                )
            ).scalar_one_or_none()

    def get_entries_by_type(
        self,
        event_type: EventType | str,
        limit: int = 100,
        offset: int = 0,
    ) -> list[EventEntryDB]:
        """Entries of one type, oldest first."""
        type_value = event_type.value if isinstance(event_type, EventType) else event_type
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(EventEntryDB)
                    .where(EventEntryDB.event_type == type_value)
                    .order_by(EventEntryDB.sequence_number.asc())
                    .limit(limit)
                    .offset(offset)
                ).scalars().all()
            )

    def get_latest_entries(self, limit: int = 50) -> list[EventEntryDB]:
        """Most recent entries, newest first."""
        with self.SessionLocal() as session:
            return list(
                session.execute(
                    select(EventEntryDB)
                    .order_by(EventEntryDB.sequence_number.desc())
                    .limit(limit)
                ).scalars().all()
            )

    def is_initialized(self) -> bool:
        """Whether the event table exists in the target database."""
        return inspect(self.engine).has_table(EventEntryDB.__tablename__)

    def get_entry_count(self) -> int:
        """Total number of entries, genesis included."""
        with self.SessionLocal() as session:
            result = session.execute(
                select(func.count()).select_from(EventEntryDB)
            )
            return result.scalar() or 0
