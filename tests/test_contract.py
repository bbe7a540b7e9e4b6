"""
Tests for the Insurance Contract — the external operations.

Validates:
- End-to-end purchase → publish → claim → repeat claim
- Settle-at-most-once, sequentially and under concurrent claims
- Time and threshold boundaries through the public surface
- Pool conservation across purchases, claims and withdrawals
- Authority-only operations reject other callers without side effects
- Optional solvency check
- Events are delivered only after an operation commits
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from parametric_ledger.clock import ManualClock
from parametric_ledger.contract import InsuranceContract
from parametric_ledger.errors import (
    AlreadySettled,
    ClaimRejected,
    Expired,
    InsufficientFunds,
    InvalidParameters,
    LedgerError,
    NotFound,
    NothingToWithdraw,
    PolicyInactive,
    ThresholdNotMet,
    Unauthorized,
)
from parametric_ledger.events import InMemoryEventLog
from parametric_ledger.schema import ClaimRejection, EventType, LedgerEvent

AUTHORITY = "authority"


class TestEndToEnd:
    """The reference scenario."""

    def setup_method(self):
        self.clock = ManualClock()
        self.log = InMemoryEventLog()
        self.contract = InsuranceContract(AUTHORITY, sink=self.log, clock=self.clock)

    def test_purchase_publish_claim(self):
        policy_id = self.contract.purchase_policy("alice", 1000, 30, "X", 50)
        assert policy_id == 1
        # Someone has to fund the pool beyond the premium for the payout
        self.contract.purchase_policy("bob", 20000, 365, "Y", 1000)
        balance_before = self.contract.get_pool_balance()

        self.contract.update_measurement(AUTHORITY, "X", 40)
        payout = self.contract.process_claim("alice", 1)

        assert payout == 1000
        assert self.contract.get_pool_balance() == balance_before - 1000
        policy = self.contract.get_policy_details(1)
        assert policy.settled is True
        assert policy.active is False

        with pytest.raises(AlreadySettled):
            self.contract.process_claim("alice", 1)
        assert self.contract.get_pool_balance() == balance_before - 1000

    def test_event_trail(self):
        self.contract.purchase_policy("alice", 1000, 30, "X", 50)
        self.contract.purchase_policy("bob", 20000, 365, "Y", 1000)
        self.contract.update_measurement(AUTHORITY, "X", 40)
        self.contract.process_claim("alice", 1)

        assert [e.event_type for e in self.log.events()] == [
            EventType.POLICY_CREATED,
            EventType.POLICY_CREATED,
            EventType.MEASUREMENT_PUBLISHED,
            EventType.CLAIM_PROCESSED,
        ]
        claim = self.log.events(EventType.CLAIM_PROCESSED)[0]
        assert claim.payload == {"id": 1, "owner": "alice", "payout": 1000}
        assert self.log.verify_chain()[0] is True

    def test_failed_claim_emits_nothing(self):
        self.contract.purchase_policy("alice", 1000, 30, "X", 50)
        self.contract.update_measurement(AUTHORITY, "X", 80)
        events_before = len(self.log)
        with pytest.raises(ThresholdNotMet):
            self.contract.process_claim("alice", 1)
        assert len(self.log) == events_before


class TestClaims:
    """Claim rejections through the public surface."""

    def setup_method(self):
        self.clock = ManualClock()
        self.contract = InsuranceContract(AUTHORITY, clock=self.clock)
        self.contract.purchase_policy("whale", 100000, 365, "Z", 5000)
        self.policy_id = self.contract.purchase_policy("alice", 1000, 30, "X", 50)
        self.contract.update_measurement(AUTHORITY, "X", 40)

    def test_unknown_policy(self):
        with pytest.raises(NotFound):
            self.contract.process_claim("alice", 99)

    def test_non_owner(self):
        with pytest.raises(Unauthorized):
            self.contract.process_claim("mallory", self.policy_id)
        assert self.contract.get_policy_details(self.policy_id).active is True

    def test_claim_at_end_succeeds(self):
        self.clock.advance(days=30)
        assert self.contract.process_claim("alice", self.policy_id) == 1000

    def test_claim_after_end_expired(self):
        self.clock.advance(days=30, seconds=1)
        with pytest.raises(Expired):
            self.contract.process_claim("alice", self.policy_id)

    def test_threshold_equal_rejected(self):
        self.contract.update_measurement(AUTHORITY, "X", 50)
        with pytest.raises(ThresholdNotMet):
            self.contract.process_claim("alice", self.policy_id)

    def test_threshold_below_pays(self):
        self.contract.update_measurement(AUTHORITY, "X", 49)
        assert self.contract.process_claim("alice", self.policy_id) == 1000

    def test_retry_after_new_measurement(self):
        self.contract.update_measurement(AUTHORITY, "X", 70)
        with pytest.raises(ThresholdNotMet):
            self.contract.process_claim("alice", self.policy_id)
        self.contract.update_measurement(AUTHORITY, "X", 10)
        assert self.contract.process_claim("alice", self.policy_id) == 1000

    def test_deactivated_policy(self):
        self.contract.deactivate_policy(AUTHORITY, self.policy_id)
        with pytest.raises(PolicyInactive):
            self.contract.process_claim("alice", self.policy_id)

    def test_insufficient_funds(self):
        self.contract.withdraw_excess(AUTHORITY)
        with pytest.raises(InsufficientFunds):
            self.contract.process_claim("alice", self.policy_id)
        assert self.contract.get_policy_details(self.policy_id).settled is False

    def test_errors_carry_codes(self):
        with pytest.raises(ClaimRejected) as excinfo:
            self.contract.update_measurement(AUTHORITY, "X", 50)
            self.contract.process_claim("alice", self.policy_id)
        assert excinfo.value.code == ClaimRejection.THRESHOLD_NOT_MET.value
        assert isinstance(excinfo.value, LedgerError)

    def test_check_claim_is_dry_run(self):
        decision = self.contract.check_claim("alice", self.policy_id)
        assert decision.eligible is True
        assert decision.payout == 1000
        assert self.contract.get_policy_details(self.policy_id).settled is False

    def test_check_claim_reports_reason(self):
        decision = self.contract.check_claim("mallory", self.policy_id)
        assert decision.reason == ClaimRejection.UNAUTHORIZED


class TestConcurrency:
    """Concurrent claims must never double-pay or overdraw the pool."""

    def test_concurrent_claims_same_policy(self):
        contract = InsuranceContract(AUTHORITY, clock=ManualClock())
        contract.purchase_policy("whale", 100000, 365, "Z", 5000)
        policy_id = contract.purchase_policy("alice", 1000, 30, "X", 50)
        contract.update_measurement(AUTHORITY, "X", 40)
        balance_before = contract.get_pool_balance()

        barrier = threading.Barrier(8)

        def claim():
            barrier.wait()
            try:
                return contract.process_claim("alice", policy_id)
            except AlreadySettled:
                return None

        with ThreadPoolExecutor(max_workers=8) as executor:
            results = list(executor.map(lambda _: claim(), range(8)))

        assert [r for r in results if r is not None] == [1000]
        assert results.count(None) == 7
        assert contract.get_pool_balance() == balance_before - 1000

    def test_concurrent_claims_share_pool(self):
        contract = InsuranceContract(AUTHORITY, clock=ManualClock())
        # 10 policies of 1000 coverage backed by 500 + 2500 = 3000 in the pool
        for i in range(10):
            contract.purchase_policy(f"holder-{i}", 1000, 30, "X", 50)
        contract.purchase_policy("whale", 50000, 365, "Z", 2500)
        contract.update_measurement(AUTHORITY, "X", 0)

        barrier = threading.Barrier(10)

        def claim(i):
            barrier.wait()
            try:
                return contract.process_claim(f"holder-{i}", i + 1)
            except InsufficientFunds:
                return None

        with ThreadPoolExecutor(max_workers=10) as executor:
            results = list(executor.map(claim, range(10)))

        paid = [r for r in results if r is not None]
        assert len(paid) == 3
        assert contract.get_pool_balance() == 0
        assert contract.pool.is_conserved()


class TestPoolConservation:
    """Balance equals premiums minus payouts minus withdrawals, exactly."""

    def test_conservation(self):
        contract = InsuranceContract(AUTHORITY, clock=ManualClock())
        premiums = [50, 77, 5000, 123, 51]
        coverages = [1000, 1500, 20000, 2000, 1001]
        for i, (premium, coverage) in enumerate(zip(premiums, coverages)):
            contract.purchase_policy(f"holder-{i}", coverage, 30, "X", premium)

        contract.update_measurement(AUTHORITY, "X", 12)
        payouts = [contract.process_claim("holder-0", 1)]
        payouts.append(contract.process_claim("holder-3", 4))

        assert contract.get_pool_balance() == sum(premiums) - sum(payouts)

        withdrawn = contract.withdraw_excess(AUTHORITY)
        assert withdrawn == sum(premiums) - sum(payouts)
        assert contract.get_pool_balance() == 0

        contract.purchase_policy("late", 1000, 30, "X", 60)
        assert contract.get_pool_balance() == sum(premiums) + 60 - sum(payouts) - withdrawn
        assert contract.pool.is_conserved()


class TestAuthorityOperations:
    """Gated operations reject other callers and leave state unchanged."""

    def setup_method(self):
        self.log = InMemoryEventLog()
        self.contract = InsuranceContract(AUTHORITY, sink=self.log, clock=ManualClock())
        self.contract.purchase_policy("alice", 1000, 30, "X", 50)

    def test_update_measurement_unauthorized(self):
        with pytest.raises(Unauthorized):
            self.contract.update_measurement("alice", "X", 0)
        assert self.contract.get_measurement("X") == 0
        assert self.contract.measurements.is_published("X") is False

    def test_withdraw_unauthorized(self):
        with pytest.raises(Unauthorized):
            self.contract.withdraw_excess("alice")
        assert self.contract.get_pool_balance() == 50

    def test_deactivate_unauthorized(self):
        with pytest.raises(Unauthorized):
            self.contract.deactivate_policy("alice", 1)
        assert self.contract.get_policy_details(1).active is True

    def test_rejections_emit_nothing(self):
        before = len(self.log)
        for call in (
            lambda: self.contract.update_measurement("alice", "X", 0),
            lambda: self.contract.withdraw_excess("alice"),
            lambda: self.contract.deactivate_policy("alice", 1),
        ):
            with pytest.raises(Unauthorized):
                call()
        assert len(self.log) == before

    def test_withdraw_excess(self):
        assert self.contract.withdraw_excess(AUTHORITY) == 50
        with pytest.raises(NothingToWithdraw):
            self.contract.withdraw_excess(AUTHORITY)

    def test_deactivate_twice(self):
        self.contract.deactivate_policy(AUTHORITY, 1)
        with pytest.raises(PolicyInactive):
            self.contract.deactivate_policy(AUTHORITY, 1)

    def test_deactivate_unknown(self):
        with pytest.raises(NotFound):
            self.contract.deactivate_policy(AUTHORITY, 42)

    def test_authority_exposed(self):
        assert self.contract.authority == AUTHORITY


class TestPurchase:
    """Purchase validation through the public surface."""

    def setup_method(self):
        self.contract = InsuranceContract(AUTHORITY, clock=ManualClock())

    def test_premium_credited(self):
        self.contract.purchase_policy("alice", 1000, 30, "X", 50)
        assert self.contract.get_pool_balance() == 50

    def test_underpaid_rejected_without_credit(self):
        with pytest.raises(InvalidParameters):
            self.contract.purchase_policy("alice", 1000, 30, "X", 49)
        assert self.contract.get_pool_balance() == 0
        assert self.contract.get_policies_for_owner("alice") == []

    @pytest.mark.parametrize(
        "coverage, duration, paid",
        [(1000.5, 30, 60), (1000, "30", 50), ("1000", 30, 50)],
    )
    def test_malformed_terms_rejected_without_credit(self, coverage, duration, paid):
        with pytest.raises(InvalidParameters):
            self.contract.purchase_policy("alice", coverage, duration, "X", paid)
        assert self.contract.get_pool_balance() == 0
        assert self.contract.get_policies_for_owner("alice") == []

    def test_portfolio(self):
        self.contract.purchase_policy("alice", 1000, 30, "X", 50)
        self.contract.purchase_policy("bob", 1000, 30, "X", 50)
        self.contract.purchase_policy("alice", 1000, 30, "Y", 50)
        assert self.contract.get_policies_for_owner("alice") == [1, 3]

    def test_custom_terms(self):
        contract = InsuranceContract(
            AUTHORITY,
            clock=ManualClock(),
            min_duration_days=7,
            max_duration_days=14,
            min_premium_percent=10,
        )
        assert contract.purchase_policy("alice", 1000, 7, "X", 100) == 1
        with pytest.raises(InvalidParameters):
            contract.purchase_policy("alice", 1000, 7, "X", 99)
        with pytest.raises(InvalidParameters):
            contract.purchase_policy("alice", 1000, 15, "X", 100)


class TestSolvencyCheck:
    """Optional rejection of purchases the pool could not back."""

    def test_disabled_by_default(self):
        contract = InsuranceContract(AUTHORITY, clock=ManualClock())
        assert contract.purchase_policy("alice", 1000, 30, "X", 50) == 1

    def test_rejects_undercollateralized_purchase(self):
        contract = InsuranceContract(AUTHORITY, clock=ManualClock(), enforce_solvency=True)
        with pytest.raises(InsufficientFunds):
            contract.purchase_policy("alice", 1000, 30, "X", 50)
        assert contract.get_pool_balance() == 0
        assert contract.policies.count == 0

    def test_accepts_fully_backed_purchase(self):
        contract = InsuranceContract(AUTHORITY, clock=ManualClock(), enforce_solvency=True)
        assert contract.purchase_policy("whale", 1000, 30, "X", 1000) == 1
        assert contract.purchase_policy("alice", 1000, 30, "X", 1000) == 2
        with pytest.raises(InsufficientFunds):
            contract.purchase_policy("bob", 1000, 30, "X", 999)

    def test_invalid_parameters_reported_first(self):
        contract = InsuranceContract(AUTHORITY, clock=ManualClock(), enforce_solvency=True)
        with pytest.raises(InvalidParameters):
            contract.purchase_policy("alice", 1000, 29, "X", 50)


class UnavailableEventStore:
    """Event sink that rejects one event type, as a failing database would."""

    def __init__(self, fail_on: EventType) -> None:
        self.fail_on = fail_on
        self.received: list[LedgerEvent] = []

    def emit(self, event: LedgerEvent) -> None:
        if event.event_type == self.fail_on:
            raise RuntimeError("event store unavailable")
        self.received.append(event)


class TestEventDelivery:
    """Events reach the sink only after an operation has fully committed."""

    def test_purchase_commits_when_sink_fails(self, caplog):
        sink = UnavailableEventStore(EventType.POLICY_CREATED)
        contract = InsuranceContract(AUTHORITY, sink=sink, clock=ManualClock())

        with caplog.at_level(logging.ERROR, logger="parametric_ledger.events"):
            assert contract.purchase_policy("alice", 1000, 30, "X", 50) == 1

        assert contract.get_policies_for_owner("alice") == [1]
        assert contract.get_pool_balance() == 50
        assert contract.pool.is_conserved()
        assert "Event delivery failed: type=policy_created" in caplog.text

    def test_claim_commits_when_sink_fails(self, caplog):
        sink = UnavailableEventStore(EventType.CLAIM_PROCESSED)
        contract = InsuranceContract(AUTHORITY, sink=sink, clock=ManualClock())
        contract.purchase_policy("alice", 1000, 30, "X", 1000)
        contract.update_measurement(AUTHORITY, "X", 40)

        with caplog.at_level(logging.ERROR, logger="parametric_ledger.events"):
            assert contract.process_claim("alice", 1) == 1000

        policy = contract.get_policy_details(1)
        assert policy.settled is True
        assert contract.get_pool_balance() == 0
        assert [e.event_type for e in sink.received] == [
            EventType.POLICY_CREATED,
            EventType.MEASUREMENT_PUBLISHED,
        ]
        assert "Event delivery failed: type=claim_processed" in caplog.text

        with pytest.raises(AlreadySettled):
            contract.process_claim("alice", 1)

    def test_sink_observes_committed_state(self):
        seen = []

        class BalanceObserver:
            def emit(self, event: LedgerEvent) -> None:
                seen.append((event.event_type, contract.get_pool_balance()))

        contract = InsuranceContract(
            AUTHORITY, sink=BalanceObserver(), clock=ManualClock()
        )
        contract.purchase_policy("alice", 1000, 30, "X", 1000)
        contract.update_measurement(AUTHORITY, "X", 40)
        contract.process_claim("alice", 1)

        assert seen == [
            (EventType.POLICY_CREATED, 1000),
            (EventType.MEASUREMENT_PUBLISHED, 1000),
            (EventType.CLAIM_PROCESSED, 0),
        ]

    def test_failed_operation_delivers_nothing(self):
        log = InMemoryEventLog()
        contract = InsuranceContract(AUTHORITY, sink=log, clock=ManualClock())
        contract.purchase_policy("alice", 1000, 30, "X", 50)
        contract.update_measurement(AUTHORITY, "X", 40)

        with pytest.raises(InsufficientFunds):
            contract.process_claim("alice", 1)
        with pytest.raises(Unauthorized):
            contract.deactivate_policy("alice", 1)

        assert [e.event_type for e in log.events()] == [
            EventType.POLICY_CREATED,
            EventType.MEASUREMENT_PUBLISHED,
        ]
        assert contract._events.pending == []
