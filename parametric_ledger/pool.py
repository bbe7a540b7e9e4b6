"""
Fund Pool — the aggregate balance backing every policy.

The pool is a single integer balance: premiums credit it, payouts and
authority withdrawals debit it. The only solvency rule enforced here is that
a debit never exceeds the current balance. Aggregate outstanding coverage is
not checked (see InsuranceContract.enforce_solvency for the optional check).

The pool does no locking of its own; InsuranceContract serializes every
balance check together with the debit that depends on it.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from parametric_ledger.clock import utc_now
from parametric_ledger.errors import InsufficientFunds, InvalidParameters, NothingToWithdraw
from parametric_ledger.events import EventSink, NullEventSink
from parametric_ledger.schema import LedgerEvent

logger = logging.getLogger(__name__)


class FundPool:
    """Integer balance with running totals for conservation checks."""

    def __init__(
        self,
        sink: EventSink | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.sink = sink if sink is not None else NullEventSink()
        self.clock = clock or utc_now
        self._balance = 0
        self.total_premiums = 0
        self.total_payouts = 0
        self.total_withdrawn = 0

    @property
    def balance(self) -> int:
        return self._balance

    def credit(self, amount: int) -> int:
        """Add an accepted premium; returns the new balance."""
        if amount <= 0:
            raise InvalidParameters(f"Credit amount must be positive, got {amount}")
        self._balance += amount
        self.total_premiums += amount
        logger.debug("Pool credited: amount=%d balance=%d", amount, self._balance)
        return self._balance

    def debit(self, amount: int) -> int:
        """Remove a payout; returns the new balance."""
        if amount <= 0:
            raise InvalidParameters(f"Debit amount must be positive, got {amount}")
        if amount > self._balance:
            raise InsufficientFunds(
                f"Pool balance {self._balance} cannot cover payout {amount}"
            )
        self._balance -= amount
        self.total_payouts += amount
        logger.info("Pool debited: amount=%d balance=%d", amount, self._balance)
        return self._balance

    def withdraw_all(self, to: str) -> int:
        """
        Move the whole balance to the authority.

        Returns:
            The amount withdrawn.

        Raises:
            NothingToWithdraw: If the balance is zero.
        """
        amount = self._balance
        if amount <= 0:
            raise NothingToWithdraw("Pool balance is zero")
        self._balance = 0
        self.total_withdrawn += amount

        logger.info("Pool withdrawn: amount=%d to=%s", amount, to)
        self.sink.emit(LedgerEvent.funds_withdrawn(to, amount).stamped(self.clock()))
        return amount

    def is_conserved(self) -> bool:
        """balance == premiums - payouts - withdrawals, exactly."""
        return self._balance == (
            self.total_premiums - self.total_payouts - self.total_withdrawn
        )
