"""Tier enforcement helpers shared by the UI handlers and the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from core.tier_constants import Tier
from services.entitlement_evaluator import DenialReason
from services.entitlement_service import EntitlementService

_REASON_MESSAGES: Dict[DenialReason, str] = {
    DenialReason.TIER_TOO_LOW: "This feature needs the {required} plan or higher.",
    DenialReason.SUBSCRIPTION_EXPIRED: "Your {tier} subscription has ended. Renew to keep using this feature.",
    DenialReason.NO_SUBSCRIPTION: "Start a trial or subscribe to {required} to use this feature.",
}


@dataclass(slots=True)
class TierGuardError(RuntimeError):
    """Raised when the user's subscription does not reach the required tier."""

    code: str
    message: str
    required_tier: Optional[str] = None
    current_tier: Optional[str] = None
    next_tier: Optional[str] = None
    remediation: Optional[str] = None

    def __post_init__(self) -> None:
        RuntimeError.__init__(self, self.message)

    def to_detail(self) -> Dict[str, Optional[str]]:
        detail: Dict[str, Optional[str]] = {
            "code": self.code,
            "message": self.message,
        }
        if self.required_tier:
            detail["requiredTier"] = self.required_tier
        if self.current_tier:
            detail["currentTier"] = self.current_tier
        if self.next_tier:
            detail["nextTier"] = self.next_tier
        if self.remediation:
            detail["remediation"] = self.remediation
        return detail


def ensure_tier(service: EntitlementService, user_id: str, required_tier: Tier) -> Tier:
    """Validate that ``user_id`` may use a ``required_tier`` feature right now.

    Returns the tier whose quotas apply when access is granted.
    """

    required = Tier(required_tier)
    decision = service.check_access(user_id, required)
    if decision.allowed:
        return service.effective_tier(user_id)

    reason = decision.reason or DenialReason.NO_SUBSCRIPTION
    record = service.subscription(user_id)
    next_tier = service.catalog.next_tier(record.tier)
    raise TierGuardError(
        code=f"tier.{reason.value}",
        message=_REASON_MESSAGES[reason].format(required=required.value, tier=record.tier.value),
        required_tier=required.value,
        current_tier=record.tier.value,
        next_tier=next_tier.value if next_tier else None,
        remediation=reason.remediation.value,
    )


__all__ = ["TierGuardError", "ensure_tier"]
