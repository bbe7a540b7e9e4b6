"""
Event Ledger — SQLAlchemy models for the persisted audit trail.

Every event a ledger component emits can be persisted here. The table is
append-only: no row is updated or deleted, and each row carries the SHA-256
hash of (previous_hash || canonical_json(fields)) so any retroactive edit is
detectable by recomputing the chain.

Timestamps are stored as ISO-8601 strings so the hashed representation
survives a round trip through any backend unchanged.
"""

from __future__ import annotations

from sqlalchemy import JSON, Column, Index, Integer, String
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all event ledger models."""
    pass


class EventEntryDB(Base):
    """
    A single persisted ledger event.

    This table is APPEND-ONLY. Sequence 0 is the genesis entry, whose
    previous_hash is all zeros.
    """

    __tablename__ = "ledger_events"

    id = Column(Integer, primary_key=True, autoincrement=True)

    # Chain ordering
    sequence_number = Column(
        Integer, nullable=False, unique=True, index=True,
        comment="Monotonically increasing sequence number",
    )

    # Hash chain
    previous_hash = Column(
        String(64), nullable=False,
        comment="SHA-256 hash of the previous entry",
    )
    entry_hash = Column(
        String(64), nullable=False, unique=True,
        comment="SHA-256 hash of this entry",
    )

    timestamp = Column(
        String(40), nullable=False,
        comment="ISO-8601 time the event was emitted",
    )
    event_type = Column(
        String(50), nullable=False, index=True,
        comment="PolicyCreated, ClaimProcessed, MeasurementPublished, ...",
    )
    payload = Column(
        JSON, nullable=False,
        comment="Event fields; structure varies by event_type",
    )

    __table_args__ = (
        Index("ix_ledger_event_type_sequence", "event_type", "sequence_number"),
    )

    def __repr__(self) -> str:
        return (
            f"<EventEntry seq={self.sequence_number} "
            f"type={self.event_type} hash={self.entry_hash[:12]}...>"
        )
