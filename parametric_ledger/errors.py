"""
Error taxonomy for the parametric insurance ledger.

Every failure is a well-defined rejection of an invalid request. Failures are
raised synchronously to the immediate caller and leave all state unchanged.
Nothing here is retried by the core; re-attempting a claim after a later
measurement update is the caller's decision.
"""

from __future__ import annotations

from parametric_ledger.schema import ClaimRejection


class LedgerError(Exception):
    """Base class for every rejection raised by the ledger."""

    code = "ledger_error"


class InvalidParameters(LedgerError):
    """Raised when a purchase request is malformed or underpaid."""

    code = "invalid_parameters"


class NotFound(LedgerError):
    """Raised when a policy id is outside the issued range."""

    code = "not_found"


class Unauthorized(LedgerError):
    """Raised when the caller may not perform a gated operation."""

    code = "unauthorized"


class NothingToWithdraw(LedgerError):
    """Raised when the authority withdraws from an empty pool."""

    code = "nothing_to_withdraw"


class LedgerIntegrityError(LedgerError):
    """Raised when the persisted event chain is missing or broken."""

    code = "ledger_integrity"


class ClaimRejected(LedgerError):
    """Base class for claim eligibility failures."""

    reason: ClaimRejection

    def __init_subclass__(cls, **kwargs: object) -> None:
        super().__init_subclass__(**kwargs)
        cls.code = cls.reason.value

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.reason.value)


class PolicyInactive(ClaimRejected):
    reason = ClaimRejection.POLICY_INACTIVE


class NotYetActive(ClaimRejected):
    reason = ClaimRejection.NOT_YET_ACTIVE


class Expired(ClaimRejected):
    reason = ClaimRejection.EXPIRED


class AlreadySettled(ClaimRejected):
    reason = ClaimRejection.ALREADY_SETTLED


class ThresholdNotMet(ClaimRejected):
    reason = ClaimRejection.THRESHOLD_NOT_MET


class InsufficientFunds(ClaimRejected):
    reason = ClaimRejection.INSUFFICIENT_FUNDS


# Unauthorized is shared with the admin gate, so it is mapped here rather
# than subclassing ClaimRejected.
_REJECTION_ERRORS: dict[ClaimRejection, type[LedgerError]] = {
    ClaimRejection.UNAUTHORIZED: Unauthorized,
    ClaimRejection.POLICY_INACTIVE: PolicyInactive,
    ClaimRejection.NOT_YET_ACTIVE: NotYetActive,
    ClaimRejection.EXPIRED: Expired,
    ClaimRejection.ALREADY_SETTLED: AlreadySettled,
    ClaimRejection.THRESHOLD_NOT_MET: ThresholdNotMet,
    ClaimRejection.INSUFFICIENT_FUNDS: InsufficientFunds,
}


def error_for(reason: ClaimRejection, message: str = "") -> LedgerError:
    """Build the exception that corresponds to a claim rejection reason."""
    error_cls = _REJECTION_ERRORS[reason]
    return error_cls(message) if message else error_cls(reason.value)
