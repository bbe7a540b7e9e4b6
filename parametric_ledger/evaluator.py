"""
Claim Evaluator — pure eligibility decision for a single claim.

Checks run in a fixed order and the first failing check decides the
rejection reason:

1. caller owns the policy           → UNAUTHORIZED
2. policy not already settled       → ALREADY_SETTLED
3. policy is active                 → POLICY_INACTIVE
4. now >= start                     → NOT_YET_ACTIVE
5. now <= end                       → EXPIRED
6. reading < drought threshold      → THRESHOLD_NOT_MET
7. pool balance >= coverage amount  → INSUFFICIENT_FUNDS

Settlement always clears the active flag, so the settled check precedes the
active check; otherwise a repeated claim would report POLICY_INACTIVE.

The threshold comparison is strict: a reading equal to the threshold does
not pay. Evaluation reads the store and pool but never mutates them.
"""

from __future__ import annotations

import logging
from datetime import datetime

from parametric_ledger.measurements import MeasurementStore
from parametric_ledger.pool import FundPool
from parametric_ledger.schema import (
    DROUGHT_THRESHOLD,
    ClaimDecision,
    ClaimRejection,
    Policy,
)

logger = logging.getLogger(__name__)


class ClaimEvaluator:
    """Decides whether a policy pays out given current measurements and funds."""

    def __init__(
        self,
        measurements: MeasurementStore,
        pool: FundPool,
        drought_threshold: float = DROUGHT_THRESHOLD,
        unpublished_location_pays: bool = True,
    ) -> None:
        """
        Args:
            measurements: Source of the latest reading per location.
            pool: Fund pool consulted for the balance check.
            drought_threshold: Readings strictly below this trigger a payout.
            unpublished_location_pays: If False, a location with no published
                reading is treated as THRESHOLD_NOT_MET instead of reading zero.
        """
        self.measurements = measurements
        self.pool = pool
        self.drought_threshold = drought_threshold
        self.unpublished_location_pays = unpublished_location_pays

    def evaluate(self, policy: Policy, caller: str, now: datetime) -> ClaimDecision:
        if caller != policy.owner:
            return ClaimDecision.reject(policy, ClaimRejection.UNAUTHORIZED)
        if policy.settled:
            return ClaimDecision.reject(policy, ClaimRejection.ALREADY_SETTLED)
        if not policy.active:
            return ClaimDecision.reject(policy, ClaimRejection.POLICY_INACTIVE)
        if now < policy.start:
            return ClaimDecision.reject(policy, ClaimRejection.NOT_YET_ACTIVE)
        if now > policy.end:
            return ClaimDecision.reject(policy, ClaimRejection.EXPIRED)

        if not self.unpublished_location_pays and not self.measurements.is_published(
            policy.location
        ):
            logger.debug("No reading published for location=%s", policy.location)
            return ClaimDecision.reject(policy, ClaimRejection.THRESHOLD_NOT_MET)

        reading = self.measurements.read(policy.location)
        if not reading < self.drought_threshold:
            return ClaimDecision.reject(
                policy, ClaimRejection.THRESHOLD_NOT_MET, measurement=reading
            )

        if self.pool.balance < policy.coverage_amount:
            return ClaimDecision.reject(
                policy, ClaimRejection.INSUFFICIENT_FUNDS, measurement=reading
            )

        return ClaimDecision.approve(policy, measurement=reading)
