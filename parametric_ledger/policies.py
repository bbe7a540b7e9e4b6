"""
Policy Ledger — owns every Policy record and the per-principal index.

Policies are created atomically on purchase: all preconditions are checked
before the id counter moves, so a rejected purchase leaves no trace. Ids are
a monotonically increasing counter starting at 1 and are never reused;
settled and deactivated policies keep theirs permanently.

The ledger hands out copies. The only mutations after creation are
mark_settled() (claim settlement) and mark_deactivated() (authority action),
and both require the policy to still be active.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable

from pydantic import ValidationError

from parametric_ledger.clock import utc_now
from parametric_ledger.errors import InvalidParameters, NotFound, PolicyInactive
from parametric_ledger.events import EventSink, NullEventSink
from parametric_ledger.schema import (
    MAX_DURATION_DAYS,
    MIN_DURATION_DAYS,
    MIN_PREMIUM_PERCENT,
    LedgerEvent,
    Policy,
    PurchaseRequest,
)

logger = logging.getLogger(__name__)


def minimum_premium(coverage_amount: int, percent: int = MIN_PREMIUM_PERCENT) -> int:
    """Smallest accepted premium: ceil(coverage * percent / 100) in integers."""
    return -(-coverage_amount * percent // 100)


class PolicyLedger:
    """
    Policy store with sequential ids and an append-only owner index.

    Usage:
        ledger = PolicyLedger()
        policy_id = ledger.create_policy(
            owner="alice",
            coverage_amount=1000,
            duration_days=30,
            location="X",
            paid_amount=50,
        )
        ledger.get_policy(policy_id).active  # True
    """

    def __init__(
        self,
        sink: EventSink | None = None,
        clock: Callable[[], datetime] | None = None,
        min_duration_days: int = MIN_DURATION_DAYS,
        max_duration_days: int = MAX_DURATION_DAYS,
        min_premium_percent: int = MIN_PREMIUM_PERCENT,
    ) -> None:
        self.sink = sink if sink is not None else NullEventSink()
        self.clock = clock or utc_now
        self.min_duration_days = min_duration_days
        self.max_duration_days = max_duration_days
        self.min_premium_percent = min_premium_percent
        self._policies: dict[int, Policy] = {}
        self._by_owner: dict[str, list[int]] = {}
        self._last_id = 0

    @property
    def count(self) -> int:
        """Number of policies issued so far."""
        return self._last_id

    def validate_purchase(
        self,
        coverage_amount: int,
        duration_days: int,
        location: str,
        paid_amount: int,
    ) -> None:
        """Raise InvalidParameters unless the purchase terms are acceptable."""
        try:
            PurchaseRequest(
                coverage_amount=coverage_amount,
                duration_days=duration_days,
                location=location,
                paid_amount=paid_amount,
            )
        except ValidationError as exc:
            error = exc.errors()[0]
            field = ".".join(str(part) for part in error["loc"])
            raise InvalidParameters(
                f"Malformed purchase: {field}: {error['msg']}"
            ) from exc

        if paid_amount <= 0:
            raise InvalidParameters("Premium must be greater than zero")
        if coverage_amount <= 0:
            raise InvalidParameters("Coverage amount must be greater than zero")
        if not self.min_duration_days <= duration_days <= self.max_duration_days:
            raise InvalidParameters(
                f"Duration must be between {self.min_duration_days} and "
                f"{self.max_duration_days} days, got {duration_days}"
            )

        required = minimum_premium(coverage_amount, self.min_premium_percent)
        if paid_amount < required:
            raise InvalidParameters(
                f"Premium {paid_amount} is below the required "
                f"{self.min_premium_percent}% of coverage ({required})"
            )

    def create_policy(
        self,
        owner: str,
        coverage_amount: int,
        duration_days: int,
        location: str,
        paid_amount: int,
    ) -> int:
        """
        Validate and record a new policy.

        Args:
            owner: Purchasing principal.
            coverage_amount: Payout on a successful claim.
            duration_days: Length of the active window.
            location: Measurement location the policy is tied to.
            paid_amount: Premium paid with the purchase.

        Returns:
            The new policy id.

        Raises:
            InvalidParameters: If any precondition fails. Nothing is recorded.
        """
        self.validate_purchase(coverage_amount, duration_days, location, paid_amount)

        start = self.clock()
        policy = Policy(
            id=self._last_id + 1,
            owner=owner,
            premium=paid_amount,
            coverage_amount=coverage_amount,
            start=start,
            end=start + timedelta(days=duration_days),
            location=location,
        )

        self._last_id = policy.id
        self._policies[policy.id] = policy
        self._by_owner.setdefault(owner, []).append(policy.id)

        logger.info(
            "Policy created: id=%d owner=%s coverage=%d premium=%d location=%s",
            policy.id, owner, coverage_amount, paid_amount, location,
        )
        self.sink.emit(
            LedgerEvent.policy_created(policy.id, owner, paid_amount, coverage_amount)
            .stamped(start)
        )
        return policy.id

    def get_policy(self, policy_id: int) -> Policy:
        """Copy of a policy; NotFound if the id was never issued."""
        return self._get(policy_id).model_copy()

    def get_policies_for_owner(self, owner: str) -> list[int]:
        return list(self._by_owner.get(owner, []))

    def outstanding_coverage(self) -> int:
        """Sum of coverage still claimable by active, unsettled policies."""
        return sum(
            policy.coverage_amount for policy in self._policies.values()
            if policy.active and not policy.settled
        )

    def mark_settled(self, policy_id: int) -> Policy:
        """Record a paid claim: settled=True, active=False."""
        policy = self._require_active(policy_id)
        policy.settled = True
        policy.active = False
        logger.info("Policy settled: id=%d", policy_id)
        return policy.model_copy()

    def mark_deactivated(self, policy_id: int) -> Policy:
        """Deactivate without settling."""
        policy = self._require_active(policy_id)
        policy.active = False
        logger.info("Policy deactivated: id=%d", policy_id)
        self.sink.emit(LedgerEvent.policy_deactivated(policy_id).stamped(self.clock()))
        return policy.model_copy()

    # ── Internal ────────────────────────────────────────────────

    def _get(self, policy_id: int) -> Policy:
        policy = self._policies.get(policy_id)
        if policy is None:
            raise NotFound(f"Policy {policy_id} not found")
        return policy

    def _require_active(self, policy_id: int) -> Policy:
        policy = self._get(policy_id)
        if not policy.active:
            raise PolicyInactive(f"Policy {policy_id} is not active")
        return policy
