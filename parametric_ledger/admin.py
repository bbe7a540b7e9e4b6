"""
Admin Controller — authority gate for privileged ledger operations.

Three operations are privileged:

- PUBLISH_MEASUREMENT: overwrite a location's reading
- WITHDRAW_FUNDS:      move the whole pool balance to the authority
- DEACTIVATE_POLICY:   switch a policy off without settling it

Exactly one authority principal may perform them. The authority is fixed
when the controller is built; rotating it is outside the ledger's concern.
The check happens before the wrapped component is touched, so a rejected
call leaves every component unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum

from parametric_ledger.errors import InvalidParameters, Unauthorized
from parametric_ledger.measurements import MeasurementStore
from parametric_ledger.policies import PolicyLedger
from parametric_ledger.pool import FundPool
from parametric_ledger.schema import MeasurementRecord, Policy

logger = logging.getLogger(__name__)


class AdminAction(str, Enum):
    """Operations reserved for the authority principal."""

    PUBLISH_MEASUREMENT = "publish_measurement"
    WITHDRAW_FUNDS = "withdraw_funds"
    DEACTIVATE_POLICY = "deactivate_policy"


class AuthorizationDecision(str, Enum):
    AUTHORIZED = "authorized"
    FORBIDDEN = "forbidden"


@dataclass
class AuthorizationResult:
    """Result of checking a caller against the authority gate."""

    decision: AuthorizationDecision
    action: AdminAction
    caller: str
    reason: str

    @property
    def is_allowed(self) -> bool:
        return self.decision == AuthorizationDecision.AUTHORIZED


class AdminController:
    """
    Gates privileged operations to a single authority principal.

    Usage:
        admin = AdminController("authority", measurements, pool, policies)
        admin.publish_measurement("authority", "X", 40)
        admin.publish_measurement("mallory", "X", 0)  # raises Unauthorized
    """

    def __init__(
        self,
        authority: str,
        measurements: MeasurementStore,
        pool: FundPool,
        policies: PolicyLedger,
    ) -> None:
        if not authority:
            raise InvalidParameters("An authority principal is required")
        self._authority = authority
        self.measurements = measurements
        self.pool = pool
        self.policies = policies

    @property
    def authority(self) -> str:
        return self._authority

    def check_permission(self, caller: str, action: AdminAction) -> AuthorizationResult:
        if caller == self._authority:
            return AuthorizationResult(
                decision=AuthorizationDecision.AUTHORIZED,
                action=action,
                caller=caller,
                reason=f"{caller} is the authority principal",
            )
        return AuthorizationResult(
            decision=AuthorizationDecision.FORBIDDEN,
            action=action,
            caller=caller,
            reason=f"Action {action.value} is reserved for the authority principal",
        )

    def require(self, caller: str, action: AdminAction) -> None:
        """Raise Unauthorized unless the caller is the authority."""
        result = self.check_permission(caller, action)
        if not result.is_allowed:
            logger.warning(
                "Privileged call rejected: action=%s caller=%s", action.value, caller
            )
            raise Unauthorized(result.reason)

    def publish_measurement(
        self, caller: str, location: str, value: float
    ) -> MeasurementRecord:
        self.require(caller, AdminAction.PUBLISH_MEASUREMENT)
        return self.measurements.publish(location, value)

    def withdraw_all(self, caller: str) -> int:
        self.require(caller, AdminAction.WITHDRAW_FUNDS)
        return self.pool.withdraw_all(self._authority)

    def deactivate_policy(self, caller: str, policy_id: int) -> Policy:
        self.require(caller, AdminAction.DEACTIVATE_POLICY)
        return self.policies.mark_deactivated(policy_id)
