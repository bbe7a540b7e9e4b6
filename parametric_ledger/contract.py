"""
Insurance Contract — the external operations of the parametric ledger.

Wires the five components together and exposes the caller-facing
operations. The caller principal is passed in already verified; nothing
here authenticates.

    purchase_policy ──► PolicyLedger.create_policy ──► FundPool.credit
    update_measurement ──► AdminController ──► MeasurementStore.publish
    process_claim ──► ClaimEvaluator ──► FundPool.debit + PolicyLedger.mark_settled

Every operation runs under one re-entrant lock. That makes evaluation,
debit and settlement of a claim a single critical section, so two claims
on the same policy cannot both see it as eligible, and claims on different
policies cannot race the shared balance into an over-withdrawal. Reads take
the same lock and return copies.

A failing operation raises a LedgerError before any component is mutated.
Components emit into a per-contract BufferedEventSink; the buffer is flushed
to the configured sink only once the operation has fully committed, and is
discarded if it raised. A sink that fails during the flush is logged and
does not turn a committed operation into an error.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Iterator

from parametric_ledger.admin import AdminController
from parametric_ledger.clock import utc_now
from parametric_ledger.errors import InsufficientFunds, error_for
from parametric_ledger.evaluator import ClaimEvaluator
from parametric_ledger.events import BufferedEventSink, EventSink, NullEventSink
from parametric_ledger.measurements import MeasurementStore
from parametric_ledger.policies import PolicyLedger
from parametric_ledger.pool import FundPool
from parametric_ledger.schema import (
    DROUGHT_THRESHOLD,
    MAX_DURATION_DAYS,
    MIN_DURATION_DAYS,
    MIN_PREMIUM_PERCENT,
    ClaimDecision,
    LedgerEvent,
    Policy,
)

logger = logging.getLogger(__name__)


class InsuranceContract:
    """
    Parametric insurance ledger with a single authority principal.

    Usage:
        contract = InsuranceContract(authority="authority")
        policy_id = contract.purchase_policy("alice", 1000, 30, "X", 50)
        contract.update_measurement("authority", "X", 40)
        payout = contract.process_claim("alice", policy_id)  # 1000
    """

    def __init__(
        self,
        authority: str,
        sink: EventSink | None = None,
        clock: Callable[[], datetime] | None = None,
        drought_threshold: float = DROUGHT_THRESHOLD,
        min_duration_days: int = MIN_DURATION_DAYS,
        max_duration_days: int = MAX_DURATION_DAYS,
        min_premium_percent: int = MIN_PREMIUM_PERCENT,
        unpublished_location_pays: bool = True,
        enforce_solvency: bool = False,
    ) -> None:
        """
        Args:
            authority: The only principal allowed to publish measurements,
                withdraw funds and deactivate policies.
            sink: Receives every audit event. Defaults to discarding them.
            clock: Returns the current time. Defaults to UTC wall time.
            drought_threshold: Readings strictly below this trigger a payout.
            min_duration_days: Shortest accepted policy window.
            max_duration_days: Longest accepted policy window.
            min_premium_percent: Minimum premium as a percent of coverage.
            unpublished_location_pays: Whether a never-published location
                reads as zero (and so satisfies the drought condition).
            enforce_solvency: Reject purchases that would leave outstanding
                coverage above the pool balance.
        """
        self.sink = sink if sink is not None else NullEventSink()
        self.clock = clock or utc_now
        self.enforce_solvency = enforce_solvency
        self._lock = threading.RLock()
        self._events = BufferedEventSink(self.sink)

        self.measurements = MeasurementStore(sink=self._events, clock=self.clock)
        self.pool = FundPool(sink=self._events, clock=self.clock)
        self.policies = PolicyLedger(
            sink=self._events,
            clock=self.clock,
            min_duration_days=min_duration_days,
            max_duration_days=max_duration_days,
            min_premium_percent=min_premium_percent,
        )
        self.evaluator = ClaimEvaluator(
            self.measurements,
            self.pool,
            drought_threshold=drought_threshold,
            unpublished_location_pays=unpublished_location_pays,
        )
        self.admin = AdminController(authority, self.measurements, self.pool, self.policies)

    @property
    def authority(self) -> str:
        return self.admin.authority

    @contextmanager
    def _operation(self) -> Iterator[None]:
        """Serialize a mutating operation and publish its events on commit."""
        with self._lock:
            try:
                yield
            except BaseException:
                self._events.discard()
                raise
            self._events.flush()

    # ── Policyholder operations ─────────────────────────────────

    def purchase_policy(
        self,
        caller: str,
        coverage_amount: int,
        duration_days: int,
        location: str,
        paid_amount: int,
    ) -> int:
        """
        Buy a policy; the premium is credited to the pool.

        Raises:
            InvalidParameters: Malformed or underpaid request.
            InsufficientFunds: Only with enforce_solvency, when the pool could
                not cover all outstanding coverage after this purchase.
        """
        with self._operation():
            self.policies.validate_purchase(
                coverage_amount, duration_days, location, paid_amount
            )
            if self.enforce_solvency:
                exposure = self.policies.outstanding_coverage() + coverage_amount
                funds = self.pool.balance + paid_amount
                if exposure > funds:
                    raise InsufficientFunds(
                        f"Outstanding coverage {exposure} would exceed pool funds {funds}"
                    )

            policy_id = self.policies.create_policy(
                caller, coverage_amount, duration_days, location, paid_amount
            )
            self.pool.credit(paid_amount)
            return policy_id

    def process_claim(self, caller: str, policy_id: int) -> int:
        """
        Pay out a policy whose location is in drought.

        Returns:
            The payout amount (the policy's coverage).

        Raises:
            NotFound: Unknown policy id.
            Unauthorized: Caller does not own the policy.
            ClaimRejected: Any eligibility failure (see ClaimEvaluator).
        """
        with self._operation():
            policy = self.policies.get_policy(policy_id)
            decision = self.evaluator.evaluate(policy, caller, self.clock())
            if not decision.eligible:
                logger.info(
                    "Claim rejected: id=%d caller=%s reason=%s",
                    policy_id, caller, decision.reason.value,
                )
                raise error_for(
                    decision.reason,
                    f"Claim on policy {policy_id}: {decision.reason.value}",
                )

            self.pool.debit(decision.payout)
            self.policies.mark_settled(policy_id)

            logger.info(
                "Claim processed: id=%d owner=%s payout=%d measurement=%s",
                policy_id, caller, decision.payout, decision.measurement,
            )
            self._events.emit(
                LedgerEvent.claim_processed(policy_id, caller, decision.payout)
                .stamped(self.clock())
            )
            return decision.payout

    def check_claim(self, caller: str, policy_id: int) -> ClaimDecision:
        """Evaluate a claim without settling it."""
        with self._lock:
            policy = self.policies.get_policy(policy_id)
            return self.evaluator.evaluate(policy, caller, self.clock())

    # ── Authority operations ────────────────────────────────────

    def update_measurement(self, caller: str, location: str, value: float) -> None:
        with self._operation():
            self.admin.publish_measurement(caller, location, value)

    def withdraw_excess(self, caller: str) -> int:
        """Withdraw the entire pool balance to the authority."""
        with self._operation():
            return self.admin.withdraw_all(caller)

    def deactivate_policy(self, caller: str, policy_id: int) -> None:
        with self._operation():
            self.admin.deactivate_policy(caller, policy_id)

    # ── Public reads ────────────────────────────────────────────

    def get_policy_details(self, policy_id: int) -> Policy:
        with self._lock:
            return self.policies.get_policy(policy_id)

    def get_policies_for_owner(self, owner: str) -> list[int]:
        with self._lock:
            return self.policies.get_policies_for_owner(owner)

    def get_pool_balance(self) -> int:
        with self._lock:
            return self.pool.balance

    def get_measurement(self, location: str) -> float:
        with self._lock:
            return self.measurements.read(location)
