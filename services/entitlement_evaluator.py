"""Pure tier-access checks over a subscription record and an instant."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from core.tier_constants import SubscriptionStatus, Tier
from services.subscription_record import SubscriptionRecord
from services.tier_catalog import TierCatalog


class Remediation(str, Enum):
    UPGRADE = "upgrade"
    RENEW = "renew"
    WAIT = "wait"


class DenialReason(str, Enum):
    TIER_TOO_LOW = "tier_too_low"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    NO_SUBSCRIPTION = "no_subscription"
    QUOTA_EXCEEDED = "quota_exceeded"
    FEATURE_UNAVAILABLE = "feature_unavailable"

    @property
    def remediation(self) -> Remediation:
        return _REMEDIATIONS[self]


_REMEDIATIONS = {
    DenialReason.TIER_TOO_LOW: Remediation.UPGRADE,
    DenialReason.SUBSCRIPTION_EXPIRED: Remediation.RENEW,
    DenialReason.NO_SUBSCRIPTION: Remediation.UPGRADE,
    DenialReason.QUOTA_EXCEEDED: Remediation.WAIT,
    DenialReason.FEATURE_UNAVAILABLE: Remediation.UPGRADE,
}


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    reason: Optional[DenialReason] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "reason": self.reason.value if self.reason else None,
            "remediation": self.reason.remediation.value if self.reason else None,
        }


_ALLOWED = AccessDecision(allowed=True)


def _window_is_live(record: SubscriptionRecord, now: datetime) -> bool:
    ends_at = record.ends_at
    return ends_at is not None and ends_at >= now


def evaluate_access(
    record: SubscriptionRecord,
    required_tier: Tier,
    now: datetime,
    catalog: TierCatalog,
) -> AccessDecision:
    """Answer whether ``record`` satisfies ``required_tier`` or better at ``now``.

    The nominal tier must dominate the required tier before the status is
    consulted, so a stale tier on an unreconciled record never grants access
    and an elapsed premium window counts as free rather than "still basic".
    """

    if Tier(required_tier) is Tier.FREE:
        return _ALLOWED
    if catalog.rank_of(record.tier) < catalog.rank_of(required_tier):
        return AccessDecision(allowed=False, reason=DenialReason.TIER_TOO_LOW)

    if record.status in (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE):
        if _window_is_live(record, now):
            return _ALLOWED
        return AccessDecision(allowed=False, reason=DenialReason.SUBSCRIPTION_EXPIRED)
    if record.status is SubscriptionStatus.EXPIRED:
        return AccessDecision(allowed=False, reason=DenialReason.SUBSCRIPTION_EXPIRED)
    return AccessDecision(allowed=False, reason=DenialReason.NO_SUBSCRIPTION)


def has_access(
    record: SubscriptionRecord,
    required_tier: Tier,
    now: datetime,
    catalog: TierCatalog,
) -> bool:
    return evaluate_access(record, required_tier, now, catalog).allowed


def effective_tier(record: SubscriptionRecord, now: datetime) -> Tier:
    """Tier whose quotas apply right now; anything without a live window is free."""
    if record.status in (SubscriptionStatus.TRIAL, SubscriptionStatus.ACTIVE) and _window_is_live(record, now):
        return record.tier
    return Tier.FREE


__all__ = [
    "AccessDecision",
    "DenialReason",
    "Remediation",
    "effective_tier",
    "evaluate_access",
    "has_access",
]
