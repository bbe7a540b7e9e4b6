"""
Ledger Schema — Pydantic models for policies, measurements, claims and events.

These models are the canonical data structures exchanged between the ledger
components. Components own their records exclusively and hand out copies, so
a model returned from a read can be inspected freely without affecting the
ledger.

Amounts are integer currency units. Timestamps are timezone-aware datetimes
supplied by the contract clock.
"""

from __future__ import annotations

import enum
import hashlib
import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, Field, StrictInt, StrictStr, computed_field


# ════════════════════════════════════════════════════════════════
# Constants
# ════════════════════════════════════════════════════════════════

DROUGHT_THRESHOLD = 50
MIN_DURATION_DAYS = 30
MAX_DURATION_DAYS = 365
MIN_PREMIUM_PERCENT = 5

# A location that has never been published reads as this value.
UNPUBLISHED_READING = 0


# ════════════════════════════════════════════════════════════════
# Enumerations
# ════════════════════════════════════════════════════════════════


class ClaimRejection(str, enum.Enum):
    """Reasons a claim is not eligible, in evaluation order."""

    UNAUTHORIZED = "unauthorized"
    ALREADY_SETTLED = "already_settled"
    POLICY_INACTIVE = "policy_inactive"
    NOT_YET_ACTIVE = "not_yet_active"
    EXPIRED = "expired"
    THRESHOLD_NOT_MET = "threshold_not_met"
    INSUFFICIENT_FUNDS = "insufficient_funds"


class EventType(str, enum.Enum):
    """Audit events emitted by the ledger components."""

    GENESIS = "genesis"
    POLICY_CREATED = "policy_created"
    CLAIM_PROCESSED = "claim_processed"
    MEASUREMENT_PUBLISHED = "measurement_published"
    POLICY_DEACTIVATED = "policy_deactivated"
    FUNDS_WITHDRAWN = "funds_withdrawn"


# ════════════════════════════════════════════════════════════════
# Core Models
# ════════════════════════════════════════════════════════════════


class Policy(BaseModel):
    """
    A single parametric insurance policy.

    Created atomically on purchase and never deleted. The only mutations are
    settlement (settled=True, active=False) and administrative deactivation
    (active=False). A settled policy is immutable.
    """

    id: int = Field(description="Sequential policy id, starting at 1")
    owner: str = Field(description="Principal that purchased the policy")
    premium: int = Field(description="Premium paid into the pool")
    coverage_amount: int = Field(description="Payout on a successful claim")
    start: datetime
    end: datetime
    location: str = Field(description="Measurement location key")
    active: bool = True
    settled: bool = False

    @computed_field
    @property
    def duration_days(self) -> int:
        return (self.end - self.start).days


class PurchaseRequest(BaseModel):
    """
    Shape of a policy purchase before any business rule is applied.

    Amounts must be real integers (no floats, numeric strings or bools) and
    the location must be a non-empty string. Range rules that depend on the
    ledger's configuration are checked by PolicyLedger.validate_purchase.
    """

    coverage_amount: StrictInt
    duration_days: StrictInt
    location: StrictStr = Field(min_length=1)
    paid_amount: StrictInt


class MeasurementRecord(BaseModel):
    """Latest published reading for one location."""

    location: str
    value: float
    published_at: datetime


class ClaimDecision(BaseModel):
    """Outcome of evaluating a claim against current state."""

    policy_id: int
    eligible: bool
    reason: ClaimRejection | None = None
    payout: int = 0
    measurement: float | None = None

    @classmethod
    def approve(cls, policy: Policy, measurement: float) -> ClaimDecision:
        return cls(
            policy_id=policy.id,
            eligible=True,
            payout=policy.coverage_amount,
            measurement=measurement,
        )

    @classmethod
    def reject(
        cls,
        policy: Policy,
        reason: ClaimRejection,
        measurement: float | None = None,
    ) -> ClaimDecision:
        return cls(
            policy_id=policy.id,
            eligible=False,
            reason=reason,
            measurement=measurement,
        )


# ════════════════════════════════════════════════════════════════
# Events
# ════════════════════════════════════════════════════════════════


class LedgerEvent(BaseModel):
    """
    An append-only audit event.

    Events are notifications to an external observability collaborator.
    They are never mutated once emitted; the payload shape depends on
    the event type.
    """

    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def stamped(self, when: datetime) -> LedgerEvent:
        """Copy of this event carrying the emitting component's clock time."""
        return self.model_copy(update={"timestamp": when})

    @classmethod
    def policy_created(
        cls, policy_id: int, owner: str, premium: int, coverage: int
    ) -> LedgerEvent:
        return cls(
            event_type=EventType.POLICY_CREATED,
            payload={
                "id": policy_id,
                "owner": owner,
                "premium": premium,
                "coverage": coverage,
            },
        )

    @classmethod
    def claim_processed(cls, policy_id: int, owner: str, payout: int) -> LedgerEvent:
        return cls(
            event_type=EventType.CLAIM_PROCESSED,
            payload={"id": policy_id, "owner": owner, "payout": payout},
        )

    @classmethod
    def measurement_published(cls, location: str, value: float) -> LedgerEvent:
        return cls(
            event_type=EventType.MEASUREMENT_PUBLISHED,
            payload={"location": location, "value": value},
        )

    @classmethod
    def policy_deactivated(cls, policy_id: int) -> LedgerEvent:
        return cls(
            event_type=EventType.POLICY_DEACTIVATED,
            payload={"id": policy_id},
        )

    @classmethod
    def funds_withdrawn(cls, to: str, amount: int) -> LedgerEvent:
        return cls(
            event_type=EventType.FUNDS_WITHDRAWN,
            payload={"to": to, "amount": amount},
        )


class ChainedEvent(BaseModel):
    """
    A LedgerEvent positioned in a hash chain.

    Hash = SHA-256(previous_hash || canonical_json(fields)), so altering any
    recorded event changes every hash after it.
    """

    sequence_number: int
    previous_hash: str
    entry_hash: str = ""
    event: LedgerEvent

    def compute_hash(self) -> str:
        return compute_event_hash(
            sequence_number=self.sequence_number,
            previous_hash=self.previous_hash,
            timestamp=self.event.timestamp.isoformat(),
            event_type=self.event.event_type.value,
            payload=self.event.payload,
        )


def compute_event_hash(
    sequence_number: int,
    previous_hash: str,
    timestamp: str,
    event_type: str,
    payload: dict[str, Any],
) -> str:
    """Hash one chained event; shared by the in-memory and SQL event logs."""
    hashable = {
        "sequence_number": sequence_number,
        "previous_hash": previous_hash,
        "timestamp": timestamp,
        "event_type": event_type,
        "payload": payload,
    }
    canonical = json.dumps(hashable, sort_keys=True, default=str)
    return hashlib.sha256(
        (previous_hash + canonical).encode("utf-8")
    ).hexdigest()
