"""Per-user subscription record and its serialised form."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from core.tier_constants import SubscriptionStatus, Tier


class InvalidSubscriptionRecord(ValueError):
    """Raised when a record violates the status/timestamp invariants."""


@dataclass(frozen=True, slots=True)
class SubscriptionRecord:
    tier: Tier = Tier.FREE
    status: SubscriptionStatus = SubscriptionStatus.NONE
    trial_ends_at: Optional[datetime] = None
    subscription_ends_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "tier", Tier(self.tier))
        object.__setattr__(self, "status", SubscriptionStatus(self.status))
        for name in ("trial_ends_at", "subscription_ends_at"):
            value = getattr(self, name)
            if value is not None and value.tzinfo is None:
                raise InvalidSubscriptionRecord(f"{name} must be timezone-aware.")
        if self.status is SubscriptionStatus.TRIAL:
            if self.trial_ends_at is None or self.subscription_ends_at is not None:
                raise InvalidSubscriptionRecord("trial records need trial_ends_at and no subscription_ends_at.")
        if self.status is SubscriptionStatus.ACTIVE:
            if self.subscription_ends_at is None or self.trial_ends_at is not None:
                raise InvalidSubscriptionRecord("active records need subscription_ends_at and no trial_ends_at.")

    @classmethod
    def initial(cls) -> "SubscriptionRecord":
        """Record assigned to a freshly created account."""
        return cls(tier=Tier.FREE, status=SubscriptionStatus.NONE)

    @classmethod
    def trial(cls, tier: Tier, ends_at: datetime) -> "SubscriptionRecord":
        return cls(tier=tier, status=SubscriptionStatus.TRIAL, trial_ends_at=ends_at)

    @classmethod
    def active(cls, tier: Tier, ends_at: datetime) -> "SubscriptionRecord":
        return cls(tier=tier, status=SubscriptionStatus.ACTIVE, subscription_ends_at=ends_at)

    @classmethod
    def lapsed(cls, status: SubscriptionStatus) -> "SubscriptionRecord":
        """Terminal record for ``expired``/``canceled``: free tier, no timestamps."""
        return cls(tier=Tier.FREE, status=status)

    @property
    def ends_at(self) -> Optional[datetime]:
        """Expiry of whichever window is live for the current status."""
        if self.status is SubscriptionStatus.TRIAL:
            return self.trial_ends_at
        if self.status is SubscriptionStatus.ACTIVE:
            return self.subscription_ends_at
        return None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "status": self.status.value,
            "trialEndsAt": self.trial_ends_at.isoformat() if self.trial_ends_at else None,
            "subscriptionEndsAt": self.subscription_ends_at.isoformat() if self.subscription_ends_at else None,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "SubscriptionRecord":
        return cls(
            tier=Tier(payload.get("tier") or Tier.FREE),
            status=SubscriptionStatus(payload.get("status") or SubscriptionStatus.NONE),
            trial_ends_at=_parse_timestamp(payload.get("trialEndsAt")),
            subscription_ends_at=_parse_timestamp(payload.get("subscriptionEndsAt")),
        )


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise InvalidSubscriptionRecord(f"Invalid timestamp: {value!r}") from exc


__all__ = ["InvalidSubscriptionRecord", "SubscriptionRecord"]
